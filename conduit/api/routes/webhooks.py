"""
Webhook receiver routes.

The receiver does no parsing beyond JSON decoding: it verifies the Graph
subscription handshake and the ``X-Hub-Signature-256`` header, then enqueues
a ``process`` job on the webhooks queue and acknowledges at once. Everything
else happens in the worker.
"""

import json
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_logger
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.processors.base_processor import BaseWebhookProcessor
from conduit.processors.factory import ProcessorFactory
from conduit.schemas.core.types import ProviderType
from conduit.schemas.jobs import ProcessIncomingJob
from conduit.workers.job import JobPriority
from conduit.workers.queues import WEBHOOKS_QUEUE

from ..dependencies import get_job_queue

logger = get_logger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
    responses={
        401: {"description": "Unauthorized - Invalid webhook signature"},
        403: {"description": "Forbidden - Webhook verification failed"},
    },
)

# Graph "object" field -> provider, for the shared Meta endpoint
_META_OBJECTS = {
    "whatsapp_business_account": ProviderType.WHATSAPP_OFFICIAL,
    "instagram": ProviderType.INSTAGRAM,
    "page": ProviderType.MESSENGER,
}

# Headers worth keeping on the job; the rest is transport noise
_KEPT_HEADERS = ("content-type", "user-agent", "x-hub-signature-256", "apikey")


def _verify_tokens(provider: ProviderType | None) -> list[str]:
    tokens = {
        ProviderType.WHATSAPP_OFFICIAL: settings.whatsapp_verify_token,
        ProviderType.INSTAGRAM: settings.instagram_verify_token,
        ProviderType.MESSENGER: settings.messenger_verify_token,
    }
    if provider is None:
        return [token for token in tokens.values() if token]
    token = tokens.get(provider)
    return [token] if token else []


def _handshake(
    provider: ProviderType | None,
    mode: str | None,
    token: str | None,
    challenge: str | None,
) -> PlainTextResponse:
    for expected in _verify_tokens(provider):
        result = BaseWebhookProcessor.verify_subscription(mode, token, challenge, expected)
        if result is not None:
            logger.info(f"Webhook verified for {provider.value if provider else 'meta'}")
            return PlainTextResponse(content=result)
    logger.warning(f"Webhook verification failed for {provider.value if provider else 'meta'}")
    raise HTTPException(status_code=403, detail="Verification failed")


async def _read_json(request: Request) -> tuple[bytes, dict[str, Any] | None]:
    """Body and decoded payload; the payload is None when it is not a JSON object."""
    body = await request.body()
    try:
        payload = json.loads(body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring webhook with invalid JSON: {e}")
        return body, None
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring webhook whose payload is a {type(payload).__name__}")
        return body, None
    return body, payload


async def _accept(
    provider: ProviderType,
    request: Request,
    body: bytes,
    payload: dict[str, Any] | None,
    queue: IJobQueue,
) -> dict[str, Any]:
    if payload is None:
        return {"status": "ignored"}
    headers = {key: value for key, value in request.headers.items() if key in _KEPT_HEADERS}

    if provider != ProviderType.WHATSAPP_UNOFFICIAL:
        processor = ProcessorFactory().get_processor(provider)
        signature = request.headers.get("x-hub-signature-256")
        if not processor.validate_webhook_signature(body, signature, settings.meta_app_secret):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    job = ProcessIncomingJob(
        channel_type=provider,
        raw_payload=payload,
        headers=headers,
        received_at=datetime.now(UTC),
    )
    queued = await queue.enqueue(
        WEBHOOKS_QUEUE, "process", job.to_wire(), priority=JobPriority.INBOUND
    )
    logger.debug(f"Queued {provider.value} webhook as job {queued.id}")
    return {"status": "received", "jobId": queued.id}


# ----------------------------------------------------------------------
# Verification handshakes
# ----------------------------------------------------------------------


@router.get("/whatsapp/official")
async def verify_whatsapp(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    return _handshake(ProviderType.WHATSAPP_OFFICIAL, hub_mode, hub_verify_token, hub_challenge)


@router.get("/instagram")
async def verify_instagram(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    return _handshake(ProviderType.INSTAGRAM, hub_mode, hub_verify_token, hub_challenge)


@router.get("/messenger")
async def verify_messenger(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    return _handshake(ProviderType.MESSENGER, hub_mode, hub_verify_token, hub_challenge)


@router.get("/meta")
async def verify_meta(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Shared endpoint: any configured Meta verify token is accepted."""
    return _handshake(None, hub_mode, hub_verify_token, hub_challenge)


# ----------------------------------------------------------------------
# Deliveries
# ----------------------------------------------------------------------


@router.post("/whatsapp/official")
async def receive_whatsapp(request: Request, queue: IJobQueue = Depends(get_job_queue)):
    body, payload = await _read_json(request)
    return await _accept(ProviderType.WHATSAPP_OFFICIAL, request, body, payload, queue)


@router.post("/whatsapp/evolution")
async def receive_evolution(request: Request, queue: IJobQueue = Depends(get_job_queue)):
    body, payload = await _read_json(request)
    return await _accept(ProviderType.WHATSAPP_UNOFFICIAL, request, body, payload, queue)


@router.post("/instagram")
async def receive_instagram(request: Request, queue: IJobQueue = Depends(get_job_queue)):
    body, payload = await _read_json(request)
    return await _accept(ProviderType.INSTAGRAM, request, body, payload, queue)


@router.post("/messenger")
async def receive_messenger(request: Request, queue: IJobQueue = Depends(get_job_queue)):
    body, payload = await _read_json(request)
    return await _accept(ProviderType.MESSENGER, request, body, payload, queue)


@router.post("/meta")
async def receive_meta(request: Request, queue: IJobQueue = Depends(get_job_queue)):
    """Shared endpoint routed by the payload's ``object`` field."""
    body, payload = await _read_json(request)
    if payload is None:
        return {"status": "ignored"}
    provider = _META_OBJECTS.get(str(payload.get("object", "")))
    if provider is None:
        logger.info(f"Ignoring Meta webhook for object '{payload.get('object')}'")
        return {"status": "ignored"}
    return await _accept(provider, request, body, payload, queue)
