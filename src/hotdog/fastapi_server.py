import time

import uvicorn
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from hotdog.config import FASTAPI_HOST, FASTAPI_PORT
from hotdog.fastapi_hotdog import router as hotdog_router
from hotdog.service import HotdogService
from hotdog.utils.logger import logger
from hotdog.utils.version import get_version


def create_app(service: HotdogService) -> FastAPI:
    app = FastAPI(
        title="Hotdog API",
        description="Hot reload bridge for pages served from this machine.",
        version=get_version(),
    )
    app.state.service = service

    # Pages on any local dev server may call the bridge
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1|\[::1\]|[\w.-]+\.localhost)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(hotdog_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "hotdog-api", "version": get_version()}

    @app.get("/ping")
    async def ping():
        """Simple endpoint to check if the API is responding"""
        return {"ping": "pong", "time": time.time()}

    return app


async def serve(service: HotdogService, host: str = FASTAPI_HOST, port: int = FASTAPI_PORT) -> None:
    """Run the HTTP surface on the current event loop until the server exits."""
    config = uvicorn.Config(
        create_app(service),
        host=host,
        port=port,
        log_level="error",  # Reduce uvicorn logs
    )
    server = uvicorn.Server(config)
    logger.debug(f"Starting FastAPI server, docs: http://{host}:{port}/docs")
    try:
        await server.serve()
    except OSError as e:
        if "address already in use" in str(e).lower():
            logger.error(f"Port {port} is already in use! Cannot start server.")
        else:
            logger.error(f"Network error starting FastAPI server: {e}")
