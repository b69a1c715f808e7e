from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .routes import router, set_daemon
from ..core.daemon import MonitorDaemon
from ..utils.config import DEFAULT_CONFIG_FILE
from ..utils.logging import get_logger


def create_app(config_file: str = DEFAULT_CONFIG_FILE, daemon: Optional[MonitorDaemon] = None,
               autostart: bool = True) -> FastAPI:
    if daemon is None:
        daemon = MonitorDaemon.from_config_file(config_file)
    set_daemon(daemon)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            daemon.start()
        yield
        daemon.stop()
        await daemon.wait_closed()

    app = FastAPI(
        title="System Monitor API",
        description="Metrics snapshots and alert rules for the local system monitor",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")
    app.state.daemon = daemon

    return app


def main():
    import argparse

    parser = argparse.ArgumentParser(description="System Monitor API Server")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE,
                        help="Configuration file path")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Host to bind to")
    parser.add_argument("-p", "--port", type=int, default=7500,
                        help="Port to bind to")

    args = parser.parse_args()

    app = create_app(args.config)
    logger = get_logger(__name__)
    logger.info(f"Starting System Monitor API server on {args.host}:{args.port}")

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=None
    )


if __name__ == "__main__":
    main()
