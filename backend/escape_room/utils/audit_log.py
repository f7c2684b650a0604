from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional

from .request_id import get_request_id

if TYPE_CHECKING:
    from ..models import RoomReservation

AuditAction = Literal[
    "reservation.held",
    "reservation.confirmed",
    "reservation.cancelled",
    "reservation.expired",
    "slot.provisioned",
]
AuditInitiator = Literal["user", "system"]


def _build_audit_logger() -> logging.Logger:
    # One JSON document per line on stderr, never mixed into the application log format.
    audit = logging.getLogger("audit")
    audit.setLevel(logging.INFO)
    audit.propagate = False
    if not audit.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        audit.addHandler(handler)
    return audit


_audit_logger = _build_audit_logger()


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    room_id: str,
    slot_key: str,
    reservation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status_from: Any = None,
    status_to: Any = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "room_id": room_id,
        "slot_key": slot_key,
        "reservation_id": reservation_id,
        "user_id": user_id,
        "status_from": _plain(status_from),
        "status_to": _plain(status_to),
        "version": version,
        "message": message,
        **(extra or {}),
    }
    line = json.dumps({key: value for key, value in entry.items() if value is not None}, default=str)
    try:
        _audit_logger.info(line)
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def audit_reservation(
    action: AuditAction,
    initiator: AuditInitiator,
    reservation: "RoomReservation",
    *,
    status_from: Any = None,
) -> None:
    """Audit a reservation state change using the record as it was committed."""
    emit_audit_log(
        action=action,
        initiator=initiator,
        room_id=reservation.room_id,
        slot_key=reservation.slot_key,
        reservation_id=reservation.id,
        user_id=reservation.user_id,
        status_from=status_from,
        status_to=reservation.status,
        version=reservation.version,
    )
