from __future__ import annotations
import json
import logging
from typing import Any, Dict, Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _settings.nats_enabled:
        return
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, max_reconnect_attempts=3, connect_timeout=2)

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def _publish(subject: str, evt: Dict[str, Any]) -> bool:
    """Best-effort publish; returns False (and logs) instead of raising."""
    if not _settings.nats_enabled:
        return False
    try:
        await nats_connect()
        await _nats.publish(subject, json.dumps(evt).encode("utf-8"))
    except Exception as e:
        logger.warning("NATS publish to %s failed: %s", subject, e)
        return False
    return True

async def publish_checkin(evt: Dict[str, Any]) -> bool:
    """
    evt = {
      "registration_id": str,
      "event_id": str,
      "user_id": str | None,
      "checked_in_at": iso8601,
      "idempotency_key": "registration_id"
    }
    """
    return await _publish(_settings.nats_subject_checkin, evt)

async def publish_event_created(evt: Dict[str, Any]) -> bool:
    """evt = {"event_id": str, "created_by": str, "start_at": iso8601, "assessment": str}"""
    return await _publish(_settings.nats_subject_event_created, evt)
