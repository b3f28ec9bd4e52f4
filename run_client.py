from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from agenthub.client import ClientMessage, StreamClient
from agenthub.config import configure_logging, load_settings
from agenthub.personas import DEFAULT_PERSONAS
from agenthub.states import ConnectionState


def parse_args() -> argparse.Namespace:
    settings = load_settings()
    p = argparse.ArgumentParser(description="Chat with a streaming agent from the terminal")
    p.add_argument("--url", type=str, default=f"ws://localhost:{settings.port}/", help="Agent server socket URL")
    p.add_argument(
        "--agent",
        type=str,
        choices=[persona.agent_id for persona in DEFAULT_PERSONAS],
        default="frontend",
        help="Which agent persona to talk to",
    )
    p.add_argument("--message", type=str, help="Send one message, print the answer and exit")
    p.add_argument("--log-level", type=str, default="WARNING", help="Log level (DEBUG, INFO, ...)")
    return p.parse_args()


class _Printer:
    """Writes agent fragments as they arrive."""

    def __init__(self) -> None:
        # keyed by entry identity; server ids repeat across reconnects
        self._lengths: dict[int, int] = {}

    def __call__(self, msg: ClientMessage) -> None:
        if msg.origin != "agent":
            return
        seen = self._lengths.get(id(msg), 0)
        sys.stdout.write(msg.content[seen:])
        self._lengths[id(msg)] = len(msg.content)
        if not msg.streaming:
            sys.stdout.write("\n")
        sys.stdout.flush()


async def main() -> None:
    args = parse_args()
    configure_logging(args.log_level)
    settings = load_settings()

    client = StreamClient(
        args.url,
        args.agent,
        max_attempts=settings.max_reconnects,
        retry_delay=settings.reconnect_delay,
        on_notice=lambda text: print(f"! {text}", file=sys.stderr),
        on_update=_Printer(),
    )
    runner = asyncio.create_task(client.run())
    try:
        if not await client.wait_open():
            return
        if args.message:
            if await client.send(args.message) is not None:
                await client.wait_idle()
            return
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if client.state == ConnectionState.FAILED:
                break
            await client.send(line.rstrip("\n"))
            await client.wait_idle()
    finally:
        await client.close()
        await runner
        logger.debug(f"client_exit | messages={len(client.transcript)}")


if __name__ == "__main__":
    asyncio.run(main())
