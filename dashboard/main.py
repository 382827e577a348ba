"""
Dashboard process entrypoint.

Resolves the configuration profile, initialises logging and serves the
operator API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import DashboardConfig, load_config
from .api.server import create_app
from .api.state import DashboardState
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(state: DashboardState) -> AsyncIterator[None]:
    LOG.info("Dashboard lifespan starting (transport %s)", state.config.transport)
    try:
        yield
    finally:
        LOG.info("Dashboard lifespan shutting down with %d peer slot(s)", len(state.slots()))


async def serve(config: DashboardConfig) -> None:
    """
    Run the operator API inside an asyncio loop.
    """

    import uvicorn

    configure_logging(config.log_level)
    dashboard_state = DashboardState(config)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        async with lifespan(dashboard_state):
            yield

    app = create_app(state=dashboard_state, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=config.log_level.lower(),
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
    parser = argparse.ArgumentParser(description="Peer session dashboard server")
    parser.add_argument("--profile", default=None, help="configuration profile to load")
    parser.add_argument("--config", default=None, help="path to an alternative profiles.yaml")
    parser.add_argument("--host", default=None, help="bind host for the API server")
    parser.add_argument("--port", type=int, default=None, help="bind port for the API server")
    parser.add_argument("--connect-timeout", type=float, default=None, help="seconds to wait for a join")
    parser.add_argument("--log-level", default=None, help="root log level")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> DashboardConfig:
    config = load_config(args.profile, args.config)
    overrides = {
        "host": args.host,
        "port": args.port,
        "connect_timeout": args.connect_timeout,
        "log_level": args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return DashboardConfig(**{**config.model_dump(), **overrides})


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = resolve_config(args)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Dashboard interrupted by user.")


if __name__ == "__main__":
    run()
