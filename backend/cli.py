"""
Command-line entry point.

    punchhub initiator -t TOKEN -c CHAT_ID [-x PROXY_URL]
    punchhub responder -t TOKEN -c CHAT_ID [-x PROXY_URL] [--api]

Every failure ends the process with a single ``Error: ...`` line on stderr
and exit status 1.
"""

import argparse
import asyncio
import logging
import os
import random
import socket
import sys
from urllib.parse import urlsplit

import uvicorn
from pydantic import ValidationError

from config import API_HOST, API_PORT, STUN_HOST, STUN_PORT, RunConfig
from errors import PunchHubError, TransportError
from main import create_app
from roles.initiator import run_initiator
from roles.responder import ResponderService

logger = logging.getLogger(__name__)


class CommandLineError(Exception):
    pass


def fatal(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-t", "--api-token", default=os.environ.get("PUNCHHUB_API_TOKEN"),
                        help="Telegram bot API token (or PUNCHHUB_API_TOKEN)")
    common.add_argument("-c", "--chat", help="numeric id of the rendezvous channel")
    common.add_argument("-x", "--proxy", help="HTTP proxy URL for the Bot API")
    common.add_argument("--stun-server", default=f"{STUN_HOST}:{STUN_PORT}",
                        help="discovery server as HOST:PORT")
    common.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    parser = argparse.ArgumentParser(prog="punchhub", description="UDP hole punching over a Telegram channel")
    sub = parser.add_subparsers(dest="role", required=True)
    sub.add_parser("initiator", parents=[common], help="request a punch and wait for a responder")
    responder = sub.add_parser("responder", parents=[common], help="answer punch requests forever")
    responder.add_argument("--api", action="store_true", help="serve the status API")
    responder.add_argument("--api-host", default=API_HOST)
    responder.add_argument("--api-port", type=int, default=API_PORT)
    return parser


def parse_config(args: argparse.Namespace) -> RunConfig:
    if not args.api_token:
        raise CommandLineError("No API token given on the command line")
    if args.chat is None:
        raise CommandLineError("No chat given on the command line")
    try:
        chat_id = int(args.chat)
    except ValueError as e:
        raise CommandLineError(f"Cannot parse chat: {e}") from e

    if args.proxy is not None:
        parts = urlsplit(args.proxy)
        if not parts.scheme or not parts.netloc:
            raise CommandLineError(f"Cannot parse proxy URL: {args.proxy}")

    host, sep, port = args.stun_server.rpartition(":")
    if not sep or not host:
        raise CommandLineError(f"Cannot parse STUN server: {args.stun_server}")
    try:
        stun_port = int(port)
    except ValueError as e:
        raise CommandLineError(f"Cannot parse STUN server port: {e}") from e

    try:
        return RunConfig(
            api_token=args.api_token,
            chat_id=chat_id,
            proxy_url=args.proxy,
            stun_host=host,
            stun_port=stun_port,
        )
    except ValidationError as e:
        raise CommandLineError(str(e)) from e


async def _initiator(config: RunConfig) -> None:
    rng = random.Random()  # seeded from os.urandom
    result = await run_initiator(config, rng)
    print(f"Remote public endpoint is {result.remote}")


def _bind_api_socket(host: str, port: int) -> socket.socket:
    """Bind the status API listener up front so a busy port is a clean error."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise TransportError(f"Cannot bind status API to {host}:{port}: {e}") from e
    return sock


async def _responder(config: RunConfig, serve_api: bool, api_host: str, api_port: int) -> None:
    service = ResponderService(config)
    try:
        await service.start()
        if not serve_api:
            await service.run()
            return

        sock = _bind_api_socket(api_host, api_port)
        server = uvicorn.Server(uvicorn.Config(create_app(service), log_level="info"))
        run_task = asyncio.create_task(service.run())
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        await asyncio.wait([run_task, serve_task], return_when=asyncio.FIRST_COMPLETED)

        # Whichever side stopped first takes the other one down
        server.should_exit = True
        if not run_task.done():
            run_task.cancel()
        await asyncio.gather(run_task, serve_task, return_exceptions=True)
        sock.close()
        if not run_task.cancelled() and run_task.exception() is not None:
            raise run_task.exception()
        if serve_task.exception() is not None:
            raise PunchHubError(f"Status API failed: {serve_task.exception()}") from serve_task.exception()
    finally:
        await service.stop()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = parse_config(args)
    except CommandLineError as e:
        fatal(f"Cannot parse command line: {e}")

    try:
        if args.role == "initiator":
            asyncio.run(_initiator(config))
        else:
            asyncio.run(_responder(config, args.api, args.api_host, args.api_port))
    except PunchHubError as e:
        fatal(str(e))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        fatal(f"Unexpected error: {e}")


if __name__ == "__main__":
    main()
