from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id
from .time import format_calendar_date

AuditAction = Literal[
    "booking.created",
    "booking.cancelled",
    "booking.paid",
    "booking.expired",
    "booking.reclaimed",
]
AuditInitiator = Literal["user", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def _date_to_str(value: date | None) -> Optional[str]:
    return format_calendar_date(value) if value is not None else None


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    booking_id: str,
    offer_id: Optional[str],
    user_id: Optional[int],
    date_from: Optional[date],
    date_until: Optional[date],
    status_from: Optional[str],
    status_to: Optional[str],
    payment_status: Optional[str] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "booking_id": booking_id,
        "offer_id": offer_id,
        "user_id": user_id,
        "date_from": _date_to_str(date_from),
        "date_until": _date_to_str(date_until),
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "payment_status": _enum_to_str(payment_status),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
