"""
Mock Server
============
Builds the FastAPI application from a config file and runs it under uvicorn.

    mockrig --config ./config.json --port 3000
    python -m mockrig

Every configured endpoint becomes one route whose handler runs a prebuilt
pipeline. Operator routes live under the admin prefix.
"""

import os
import asyncio
import logging
import argparse
import threading
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from limits.storage import Storage

from mockrig import __version__
from mockrig.core.config import ServerConfig, load_config
from mockrig.core.errors import ConfigError, ShutdownTimeout
from mockrig.core.state import SimulationState
from mockrig.core.websocket import ConnectionManager
from mockrig.routers import dashboard, metrics
from mockrig.services.monitor import run_bucket_ticker, run_state_broadcaster
from mockrig.services.pipeline import PipelineComposer
from mockrig.services.registry import EndpointRegistry
from mockrig.utils.rate_buckets import RateBucketTracker

# Logging Setup
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s [%(levelname)s] %(message)s',
)
logger = logging.getLogger("mockrig")


def create_app(
    config: ServerConfig,
    state: Optional[SimulationState] = None,
    tracker: Optional[RateBucketTracker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    limiter_storage: Optional[Storage] = None,
) -> FastAPI:
    """
    Wire every endpoint pipeline and the operator routes into one app.

    Raises ConfigError if a descriptor cannot be built (missing asset, bad
    template, duplicate route). Nothing is served in that case.
    """
    state = state or SimulationState()
    tracker = tracker or RateBucketTracker()
    owns_client = http_client is None
    if owns_client:
        # useProxy routes upstream calls through HTTP_PROXY / HTTPS_PROXY
        http_client = httpx.AsyncClient(timeout=60.0, trust_env=config.use_proxy, follow_redirects=False)

    composer = PipelineComposer(state, tracker, http_client=http_client, limiter_storage=limiter_storage)
    registry = EndpointRegistry(composer)
    registry.build(config.endpoints)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tasks = [
            asyncio.create_task(run_bucket_ticker(tracker)),
            asyncio.create_task(run_state_broadcaster(state, tracker, app.state.connections)),
        ]
        logger.info(f"🚀 Serving {len(registry)} endpoints, operator routes under {config.admin_prefix}")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if owns_client:
                await http_client.aclose()

    app = FastAPI(title="mockrig", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.config = config
    app.state.simulation = state
    app.state.tracker = tracker
    app.state.registry = registry
    app.state.connections = ConnectionManager()
    app.state.server = None

    app.include_router(dashboard.router, prefix=config.admin_prefix, tags=["Admin"])
    app.include_router(metrics.router, prefix=config.admin_prefix, tags=["Admin"])
    registry.mount(app)

    if not config.admin_token:
        logger.warning("⚠️ ADMIN_TOKEN not set: operator routes are open to anyone who can reach the server")
    return app


class MockServer(uvicorn.Server):
    """
    uvicorn server with a bounded shutdown.

    On SIGINT/SIGTERM or an admin shutdown request, uvicorn stops accepting
    and drains in-flight requests. If that has not finished after
    ``shutdown_timeout`` seconds the process exits with status 1.
    """

    def __init__(self, config: uvicorn.Config, shutdown_timeout: float):
        super().__init__(config)
        self.shutdown_timeout = shutdown_timeout
        self._watchdog: Optional[threading.Thread] = None
        self._drained = threading.Event()

    def handle_exit(self, sig, frame):
        self._arm_watchdog()
        super().handle_exit(sig, frame)

    def request_shutdown(self):
        logger.info("🛑 Shutdown requested")
        self._arm_watchdog()
        self.should_exit = True

    def _arm_watchdog(self):
        if self._watchdog is not None:
            return
        self._watchdog = threading.Thread(target=self._watch, name="mockrig-shutdown-watchdog", daemon=True)
        self._watchdog.start()

    def wait_for_drain(self):
        """Block until serve() has returned. Raises ShutdownTimeout after the grace period."""
        if not self._drained.wait(self.shutdown_timeout):
            raise ShutdownTimeout(
                f"Could not close connections in time ({self.shutdown_timeout:g}s), forcefully shutting down"
            )

    def _watch(self):
        try:
            self.wait_for_drain()
        except ShutdownTimeout as e:
            logger.error(f"❌ {e}")
            os._exit(1)

    async def serve(self, sockets=None):
        try:
            await super().serve(sockets=sockets)
        finally:
            self._drained.set()
        logger.info("Server shutdown successfully")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mockrig", description="Configurable HTTP mock server")
    parser.add_argument("--config", help="Path to the endpoint config file (default: $MOCKRIG_CONFIG or ./config.json)")
    parser.add_argument("--host", help="Bind address (overrides serverHost and $HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides serverPort and $PORT)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
        app = create_app(config)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return 1

    host = args.host or config.host
    port = args.port or config.port
    server = MockServer(
        uvicorn.Config(
            app,
            host=host,
            port=port,
            proxy_headers=True,
            forwarded_allow_ips="*",
            log_level=logging.getLevelName(logger.getEffectiveLevel()).lower(),
        ),
        shutdown_timeout=config.shutdown_timeout,
    )
    app.state.server = server
    logger.info(f"Listening on http://{host}:{port}")
    server.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
