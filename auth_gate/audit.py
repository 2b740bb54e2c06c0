"""
Audit logging. Security-relevant events only; never codes or session ids.
Records go to the "auth_gate.audit" logger so they can be routed separately.
"""
import logging

from fastapi import Request

audit_logger = logging.getLogger("auth_gate.audit")

EVENT_CODE_REQUESTED = "code_requested"
EVENT_CODE_RATE_LIMITED = "code_rate_limited"
EVENT_CODE_DELIVERY_FAILED = "code_delivery_failed"
EVENT_VERIFY_OK = "verify_ok"
EVENT_VERIFY_FAIL = "verify_fail"
EVENT_VERIFY_LOCKOUT = "verify_lockout"
EVENT_VERIFY_NO_CHALLENGE = "verify_no_challenge"
EVENT_VERIFY_MALFORMED = "verify_malformed"
EVENT_GATE_DENIED = "gate_denied"
EVENT_LOGOUT = "logout"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """
    Client identity as seen through the trusted proxy: X-Real-Ip, then the first
    X-Forwarded-For entry, then the socket peer.
    """
    if request is None:
        return None
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    event_type: str,
    *,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Emit one audit record."""
    level = logging.INFO if outcome == OUTCOME_SUCCESS else logging.WARNING
    audit_logger.log(
        level,
        "event=%s ip=%s outcome=%s",
        event_type,
        ip or "-",
        outcome,
        extra={"event_type": event_type, "client_ip": ip, "outcome": outcome},
    )
