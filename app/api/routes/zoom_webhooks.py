import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from app.core.config import get_settings
from app.schemas.zoom import URL_VALIDATION_EVENT
from app.services.webhook_signature import (
    WebhookSignatureVerifier,
    WebhookValidationError,
    WebhookVerificationError,
)
from app.services.zoom_event_service import ZoomEventService, ZoomWebhookEvent

router = APIRouter(tags=["zoom"])
logger = logging.getLogger(__name__)

EVENT_RECEIVED_MESSAGE = "Event received."


@router.post("/zoom-webhook", response_model=None)
async def receive_zoom_webhook(request: Request) -> JSONResponse | PlainTextResponse:
    raw_body = await request.body()
    signature = request.headers.get("x-zm-signature")
    timestamp = request.headers.get("x-zm-request-timestamp")
    settings = get_settings()
    verifier = WebhookSignatureVerifier(
        settings.zoom_webhook_secret_token,
        timestamp_tolerance_seconds=settings.zoom_webhook_timestamp_tolerance_seconds,
    )

    payload = _parse_payload(raw_body)
    if payload is None:
        # Unsigned callers get 401 before any hint about body validation.
        _verify_or_reject(verifier, raw_body=raw_body, timestamp=timestamp, signature=signature)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Request body must be a JSON object.",
        )

    event_type = _to_clean_text(payload.get("event"))
    event_payload = payload.get("payload")
    if not isinstance(event_payload, dict):
        event_payload = {}

    if event_type == URL_VALIDATION_EVENT:
        logger.info("Responding to Zoom URL validation challenge")
        try:
            validation = verifier.build_url_validation_response(event_payload.get("plainToken"))
        except WebhookValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except WebhookVerificationError as exc:
            logger.error("Zoom URL validation rejected: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Verification failed.",
            ) from exc
        return JSONResponse(status_code=status.HTTP_200_OK, content=validation.model_dump())

    _verify_or_reject(
        verifier,
        raw_body=raw_body,
        timestamp=timestamp,
        signature=signature,
        event_type=event_type,
    )

    event = ZoomWebhookEvent(
        event_type=event_type or "",
        payload=event_payload,
        raw_body=raw_body,
        signature=signature,
        timestamp=timestamp,
        download_token=_to_clean_text(payload.get("download_token")),
    )
    logger.info("Zoom webhook verified event_type=%s meeting_uuid=%s", event.event_type, event.meeting_uuid)

    try:
        service = ZoomEventService(settings)
        ack = await run_in_threadpool(service.process_event, event)
    except Exception as exc:
        logger.exception("Zoom webhook processing failed event_type=%s", event.event_type)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    logger.info(
        "Zoom webhook processed event_type=%s meeting_uuid=%s action=%s feedback_kind=%s detail=%s",
        ack.event_type,
        ack.meeting_uuid,
        ack.action,
        ack.feedback_kind,
        ack.detail,
    )
    return PlainTextResponse(EVENT_RECEIVED_MESSAGE, status_code=status.HTTP_200_OK)


def _verify_or_reject(
    verifier: WebhookSignatureVerifier,
    *,
    raw_body: bytes,
    timestamp: str | None,
    signature: str | None,
    event_type: str | None = None,
) -> None:
    try:
        verifier.verify(raw_body=raw_body, timestamp=timestamp, signature=signature)
    except WebhookVerificationError as exc:
        logger.warning(
            "Zoom webhook rejected event_type=%s has_signature=%s has_timestamp=%s reason=%s",
            event_type,
            bool(signature),
            bool(timestamp),
            exc,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Verification failed.",
        ) from exc


def _parse_payload(raw_body: bytes) -> dict[str, Any] | None:
    try:
        parsed_payload = json.loads(raw_body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed_payload, dict):
        return None
    return parsed_payload


def _to_clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
