from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Sequence

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.modified",
    "reservation.cancelled",
    "reservation.approved",
    "reservation.rejected",
    "reservation.paid",
    "lot.provisioned",
]
AuditInitiator = Literal["user", "admin", "payment"]


class AuditLogError(RuntimeError):
    pass


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


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: Optional[int],
    kind: Optional[str],
    spot_ids: Optional[Sequence[int]],
    user_id: Optional[int],
    status_from: Optional[str],
    status_to: Optional[str],
    version: Optional[int],
    payment_status: Optional[str] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises AuditLogError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "reservation_id": reservation_id,
        "kind": _enum_to_str(kind),
        "spot_ids": list(spot_ids) if spot_ids is not None else None,
        "user_id": user_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "payment_status": _enum_to_str(payment_status),
        "version": version,
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
        raise AuditLogError("failed to emit audit log") from exc


def audit_reservation(
    action: AuditAction,
    reservation: Any,
    *,
    initiator: AuditInitiator,
    status_from: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    """Audit a lifecycle transition of a regular or event reservation."""
    emit_audit_log(
        action=action,
        initiator=initiator,
        reservation_id=reservation.id,
        kind=reservation.kind,
        spot_ids=reservation.spot_ids,
        user_id=reservation.user_id,
        status_from=status_from,
        status_to=reservation.status,
        version=reservation.version,
        payment_status=reservation.payment_status,
        message=message,
    )
