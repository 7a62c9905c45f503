"""Run the stream points bot: ``python -m stream_points``."""

import asyncio

from stream_points.bot.client import run_bot


def main() -> None:
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
