"""
OpenID Provider application.
create_app() builds the FastAPI app around a validated Provider; main() reads the environment,
fails fast on bad configuration (before any port is bound) and serves with uvicorn.
"""
import logging
import sys
from collections.abc import Mapping
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from op_server.authorize import router as authorize_router
from op_server.config import Settings
from op_server.errors import ConfigurationError, InvalidToken, OPError
from op_server.interaction_endpoint import router as interaction_router
from op_server.logout import router as logout_router
from op_server.provider import Provider, build_provider
from op_server.token_endpoint import router as token_router
from op_server.userinfo import router as userinfo_router
from op_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)


async def op_error_handler(request: Request, exc: OPError) -> JSONResponse:
    """OAuth error JSON: {"error", "error_description"} with the error's status."""
    if exc.status_code >= 500:
        logger.error("Unhandled provider error on %s: %s", request.url.path, exc.description)
    else:
        logger.info("%s on %s: %s", exc.error, request.url.path, exc.description)
    headers = {"Cache-Control": "no-store"}
    if isinstance(exc, InvalidToken):
        headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "error_description": exc.description},
        headers=headers,
    )


def create_app(settings: Settings | None = None, provider: Provider | None = None) -> FastAPI:
    """Build the app. Raises ConfigurationError if the configuration is invalid."""
    if provider is None:
        provider = build_provider(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        provider.close()

    app = FastAPI(title="OpenID Provider", version="1.0.0", lifespan=lifespan)
    app.state.provider = provider
    app.add_exception_handler(OPError, op_error_handler)
    app.include_router(authorize_router, tags=["authorize"])
    app.include_router(interaction_router, tags=["interaction"])
    app.include_router(token_router, tags=["token"])
    app.include_router(userinfo_router, tags=["userinfo"])
    app.include_router(logout_router, tags=["logout"])
    app.include_router(well_known_router, tags=["well-known"])

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "op_server"}

    return app


def main(environ: Mapping[str, str] | None = None) -> None:
    settings = None
    try:
        settings = Settings.from_env(environ)
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        app = create_app(settings)
    except ConfigurationError as e:
        if settings is None:
            logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration; refusing to start")
        for field in e.fields or [e.description]:
            logger.error("  %s", field)
        sys.exit(1)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
