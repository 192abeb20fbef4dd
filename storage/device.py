"""Stable identifier for this client installation.

Sent as ``X-Client-Id`` with every replayed action so the server can scope
idempotency keys to the installation that generated them. The id has the same
shape as an action id (32 lower-case hex characters); anything else found on
disk is treated as damaged and replaced.
"""
from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from core.settings import DEVICE_ID_PATH


logger = logging.getLogger("learnrelax.device")

_CLIENT_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def is_valid_client_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_CLIENT_ID_RE.match(value))


def load_client_id(path: Optional[Path] = None) -> Optional[str]:
    """Return the stored id, or ``None`` when it is missing or unreadable."""

    target = Path(path or DEVICE_ID_PATH)
    try:
        value = target.read_text(encoding="utf-8").strip().lower()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Cannot read client id from %s: %s", target, exc)
        return None
    if not is_valid_client_id(value):
        logger.warning("Ignoring malformed client id in %s", target)
        return None
    return value


def get_client_id(path: Optional[Path] = None) -> str:
    """Return the persisted client id, creating it on first use.

    If the data directory is not writable the fresh id is still returned, so
    the current run can sync; a later run will then present a different id.
    """

    target = Path(path or DEVICE_ID_PATH)
    existing = load_client_id(target)
    if existing:
        return existing

    client_id = uuid.uuid4().hex
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(client_id, encoding="utf-8")
        tmp.replace(target)
    except OSError as exc:
        logger.warning("Cannot persist client id to %s: %s", target, exc)
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        return client_id
    logger.info("Generated client id %s", client_id)
    return client_id


__all__ = ["get_client_id", "is_valid_client_id", "load_client_id"]
