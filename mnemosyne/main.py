"""
Engine process entrypoint.

Resolves the round profile, initialises logging and serves the control API
that the host renderer connects to.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Optional

from . import EngineConfig
from .api.server import create_app
from .api.state import GameSession
from .config import ConfigError, Difficulty
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(
    config: EngineConfig,
    host: str = "127.0.0.1",
    port: int = 8090,
    seed: Optional[int] = None,
    log_level: str = "info",
) -> None:
    """
    Run the control API inside an asyncio loop.

    Parameters
    ----------
    config:
        Top level engine configuration.
    host, port:
        Bind address for the FastAPI/uvicorn server. Loopback by default; the
        renderer is expected to run on the same device.
    seed:
        Optional seed for reproducible placements.
    log_level:
        Level name for the ``mnemosyne`` loggers and uvicorn.
    """

    import uvicorn

    configure_logging(log_level)
    session = GameSession(settings=config.round_settings(), active_profile=config.profile, seed=seed)
    app = create_app(session=session)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level=log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mnemosyne round engine server")
    parser.add_argument("--profile", default="default", help="round profile to load")
    parser.add_argument(
        "--difficulty",
        choices=[level.value for level in Difficulty],
        default=None,
        help="override the profile's difficulty",
    )
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    parser.add_argument("--port", type=int, default=8090, help="bind port for the API server")
    parser.add_argument("--seed", type=int, default=None, help="seed for placement randomness")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="verbosity of engine and server logs",
    )
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = EngineConfig(profile=args.profile, difficulty=args.difficulty)

    try:
        config.round_settings()
    except ConfigError as exc:
        raise SystemExit(f"mnemosyne: {exc}") from exc

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port, seed=args.seed, log_level=args.log_level))
    except KeyboardInterrupt:
        LOG.info("Engine interrupted by user.")


if __name__ == "__main__":
    run()
