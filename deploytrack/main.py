import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deploytrack import __version__
from deploytrack.config import Settings, settings as default_settings
from deploytrack.database.connection import Database
from deploytrack.errors import DeploymentError
from deploytrack.apis import routes_deployment, routes_executor, routes_auto_deploy, routes_webhooks

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Build the API application around an explicitly constructed Database.

    The database is opened when the app starts and closed when it shuts down.
    """
    settings = settings or default_settings
    database = database or Database(settings.database_url, echo=settings.database_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.validate()
        await database.open()
        try:
            yield
        finally:
            await database.close()

    app = FastAPI(title="Deployment Tracker API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    @app.exception_handler(DeploymentError)
    async def deployment_error_handler(request: Request, exc: DeploymentError):
        logger.info(
            f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
            extra={"path": request.url.path}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        if settings.is_production:
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # CORS middleware for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_deployment.router)
    app.include_router(routes_executor.router)
    app.include_router(routes_auto_deploy.router)
    app.include_router(routes_webhooks.router)

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "running",
            "service": "Deployment Tracker API",
            "version": __version__
        }

    return app


configure_logging(default_settings)
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "deploytrack.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not default_settings.is_production
    )
