"""Provider webhook endpoints: ``/webhook/{channel}``."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from leadflow.automation.notifier import JobNotifier
from leadflow.core.config import AppSettings
from leadflow.core.domain import ChannelType
from leadflow.inbound import InboundPipeline, ParsedWebhook, parse_webhook

from ..dependencies import NotifierDep, SessionDep, SettingsDep
from ..utils.security import validate_hmac_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

SIGNATURE_HEADERS = ("X-Hub-Signature-256", "X-Signature")


def _channel(value: str) -> ChannelType:
    try:
        return ChannelType(value.lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown channel {value}"
        ) from exc


@router.get("/{channel}", response_class=PlainTextResponse)
async def verify_webhook(
    channel: str,
    settings: SettingsDep,
    mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
) -> str:
    _channel(channel)
    if mode == "subscribe" and token == settings.gateway.verify_token and challenge:
        return challenge
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="verification failed")


@router.post("/{channel}")
async def receive_webhook(
    channel: str,
    request: Request,
    settings: SettingsDep,
    session: SessionDep,
    notifier: NotifierDep,
) -> dict[str, Any]:
    channel_type = _channel(channel)
    raw_body = await request.body()
    signature = next(
        (request.headers[name] for name in SIGNATURE_HEADERS if name in request.headers), None
    )
    validate_hmac_signature(settings.gateway.secret_for(channel_type.value), raw_body, signature)

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="invalid JSON payload"
        ) from exc

    parsed = parse_webhook(channel_type, payload)
    events, applied = await run_in_threadpool(
        _process, session, settings, notifier, parsed
    )
    return {
        "status": "ok",
        "events": events,
        "statuses_applied": applied,
        "rejected": parsed.rejected,
    }


def _process(
    session: Session,
    settings: AppSettings,
    notifier: JobNotifier,
    parsed: ParsedWebhook,
) -> tuple[list[dict[str, Any]], int]:
    pipeline = InboundPipeline(session, settings, notifier=notifier)
    events = [pipeline.process(envelope).to_dict() for envelope in parsed.envelopes]
    applied = sum(1 for update in parsed.statuses if pipeline.apply_status(update))
    return events, applied
