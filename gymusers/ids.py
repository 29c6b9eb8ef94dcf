"""Identifier and timestamp helpers for locally manufactured records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    """Return the current UTC instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


__all__ = ["generate_id", "now_iso"]
