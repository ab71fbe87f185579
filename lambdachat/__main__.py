"""
Main entry point for Lambda Chat.
Run with: python -m lambdachat relay
      or: python -m lambdachat chat --username alice --sig-srv ws://localhost:8080
"""
import argparse
import asyncio
import sys

from lambdachat.core.config import ClientConfig, RelayConfig
from lambdachat.core.exceptions import ConfigError
from lambdachat.core.logging import setup_logging
from lambdachat.signaling.server import run_relay
from lambdachat.webrtc.client import ChatClient


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lambdachat")
    sub = parser.add_subparsers(dest="command", required=True)

    relay = sub.add_parser("relay", help="run the signaling relay")
    relay.add_argument("--host")
    relay.add_argument("--port", type=int)

    chat = sub.add_parser("chat", help="join the room from a terminal")
    chat.add_argument("--username", required=True)
    chat.add_argument("--sig-srv", default="ws://localhost:8080")
    chat.add_argument("--log-level", default="WARNING")
    return parser


async def _read_input(client: ChatClient):
    """Send each stdin line as a chat message."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        client.send_message(line)


async def run_terminal_chat(config: ClientConfig):
    client = ChatClient(config)
    client.add_message_listener(lambda msg: print(f"{msg.username}: {msg.message}", flush=True))

    reader = asyncio.create_task(_read_input(client))
    try:
        await client.run()
    finally:
        reader.cancel()


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "relay":
        config = RelayConfig()
        if args.host:
            config.host = args.host
        if args.port:
            config.port = args.port
        asyncio.run(run_relay(config))
        return 0

    setup_logging(args.log_level, log_file="lambdachat_client.log")
    try:
        config = ClientConfig(
            username=args.username,
            sig_srv=args.sig_srv,
            msg_box_id="stdout",
            input_id="stdin"
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    asyncio.run(run_terminal_chat(config))
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
