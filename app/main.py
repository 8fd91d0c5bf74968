import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.api.router import api_router
from app.core.config import get_settings
from app.services.health_service import RUNNING_MESSAGE


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    _warn_about_missing_configuration()
    yield


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    app.add_api_route("/", _root_status, methods=["GET"], response_class=PlainTextResponse)

    return app


def _root_status() -> str:
    return RUNNING_MESSAGE


def _warn_about_missing_configuration() -> None:
    settings = get_settings()
    if not settings.zoom_webhook_secret_token:
        logger.warning(
            "ZOOM_WEBHOOK_SECRET_TOKEN is not set; webhook requests will be rejected until it is configured.",
        )
    if not settings.zoom_credentials_configured:
        logger.warning(
            "Zoom OAuth credentials are incomplete; recordings can only be fetched with webhook download tokens.",
        )
    if not settings.openai_configured:
        logger.warning(
            "OPENAI_API_KEY is not set; feedback will be simulated and audio cannot be transcribed.",
        )
    logger.info("Webhook endpoint ready path=%s/zoom-webhook", settings.api_prefix)


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
