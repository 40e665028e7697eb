"""Entry point: ``python -m tablebot``."""

import asyncio
import contextlib

from tablebot.app import main


def run() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
