from __future__ import annotations
import json
import logging
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

def _servers() -> list[str]:
    return [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]

async def _on_disconnect():
    logger.warning("[nats] disconnected")

async def _on_reconnect():
    logger.info("[nats] reconnected to %s", _nats.connected_url.netloc if _nats.connected_url else "?")

async def nats_connect():
    if not _nats.is_connected:
        await _nats.connect(
            servers=_servers(),
            connect_timeout=2,
            max_reconnect_attempts=3,
            disconnected_cb=_on_disconnect,
            reconnected_cb=_on_reconnect,
        )
        logger.info("[nats] connected, mirroring events to %s.*", _settings.nats_subject_events)

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def publish_event(evt: dict):
    """
    Mirror one session event; subject is ``<NATS_SUBJECT_EVENTS>.<type>``, e.g.
    ``attendance.events.attendance_marked``. Body is the event as JSON.
    """
    await nats_connect()
    subject = f"{_settings.nats_subject_events}.{evt['type']}"
    await _nats.publish(subject, json.dumps(evt).encode("utf-8"))
