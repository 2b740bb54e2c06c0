"""
Challenge/response flow: gate check, code request, code verification, session issue.

Per client identity:
    UNCHALLENGED --request--> CODE_PENDING --verify(correct)--> SESSION_ACTIVE
    CODE_PENDING --verify(wrong)--> CODE_PENDING, or UNCHALLENGED once attempts exceed the ceiling
    CODE_PENDING --request within cooldown--> unchanged (rate limited)
    CODE_PENDING / SESSION_ACTIVE --expired--> UNCHALLENGED

Every failure is returned as an outcome; nothing here raises to the caller.
"""
import enum
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

from auth_gate.config import Settings
from auth_gate.notifiers import NotificationError, Notifier
from auth_gate.store import CheckResult, Store

logger = logging.getLogger(__name__)


def generate_code(length: int) -> str:
    """Numeric code of exactly length digits, leading zeros kept."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def generate_session_id() -> str:
    """256 random bits, hex encoded."""
    return secrets.token_hex(32)


class GateOutcome(enum.Enum):
    PASS = "pass"
    LOGIN_REQUIRED = "login_required"
    UNAUTHORIZED = "unauthorized"


class RequestOutcome(enum.Enum):
    SENT = "sent"
    RATE_LIMITED = "rate_limited"
    DELIVERY_FAILED = "delivery_failed"


class VerifyOutcome(enum.Enum):
    VERIFIED = "verified"
    MALFORMED = "malformed"
    NO_CHALLENGE = "no_challenge"
    INVALID = "invalid"
    LOCKED_OUT = "locked_out"


@dataclass
class GateResult:
    outcome: GateOutcome
    location: str | None = None


@dataclass
class RequestResult:
    outcome: RequestOutcome
    retry_after: float | None = None


@dataclass
class VerifyResult:
    outcome: VerifyOutcome
    session_id: str | None = None


class AuthFlow:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self._sleep = sleep

    def is_auth_path(self, uri: str | None) -> bool:
        if not uri:
            return False
        prefix = self.settings.path_prefix
        path = uri.split("?", 1)[0]
        return path == prefix or path.startswith(prefix + "/")

    def login_url(self, scheme: str, host: str, return_to: str) -> str:
        query = urlencode({"redirect_url": return_to})
        return f"{scheme}://{host}{self.settings.path_prefix}/login?{query}"

    def gate(
        self,
        forwarded_uri: str | None,
        forwarded_host: str | None,
        forwarded_proto: str | None,
        session_token: str | None,
    ) -> GateResult:
        """
        Decide whether the proxied request may pass. Auth-flow paths always pass so the
        challenge pages stay reachable. Without X-Forwarded-Host there is no safe place to
        send the caller back to, so the check fails closed.
        """
        if self.is_auth_path(forwarded_uri):
            return GateResult(GateOutcome.PASS)
        if session_token and self.store.is_session_live(session_token):
            return GateResult(GateOutcome.PASS)
        if not forwarded_host:
            return GateResult(GateOutcome.UNAUTHORIZED)
        scheme = forwarded_proto or "https"
        return_to = f"{scheme}://{forwarded_host}{forwarded_uri or '/'}"
        return GateResult(
            GateOutcome.LOGIN_REQUIRED,
            location=self.login_url(scheme, forwarded_host, return_to),
        )

    def request_code(self, identity: str) -> RequestResult:
        """
        Issue and deliver a fresh code unless one was issued within the cooldown window.
        A failed delivery leaves the code installed; the code itself is never returned.
        """
        code = generate_code(self.settings.code_length)
        retry_after = self.store.issue_code_unless_cooling(
            identity, code, self.settings.code_ttl, self.settings.cooldown
        )
        if retry_after is not None:
            return RequestResult(RequestOutcome.RATE_LIMITED, retry_after=retry_after)
        try:
            self.notifier.send_code(code, identity)
        except NotificationError as e:
            logger.error("Failed to send code to %s: %s", identity, e)
            return RequestResult(RequestOutcome.DELIVERY_FAILED)
        except Exception:
            # Notifiers are pluggable; whatever one raises is still a failed delivery
            logger.exception("Notifier raised while sending code to %s", identity)
            return RequestResult(RequestOutcome.DELIVERY_FAILED)
        return RequestResult(RequestOutcome.SENT)

    def is_well_formed(self, submitted: str | None) -> bool:
        if submitted is None:
            return False
        value = submitted.strip()
        return len(value) == self.settings.code_length and value.isascii() and value.isdigit()

    def verify_code(self, identity: str, submitted: str | None) -> VerifyResult:
        """
        Check a submitted code. Every call first waits verify_delay seconds, with no lock
        held, so timing says nothing about the outcome and guessing stays slow.
        """
        if self.settings.verify_delay > 0:
            self._sleep(self.settings.verify_delay)
        if not self.is_well_formed(submitted):
            return VerifyResult(VerifyOutcome.MALFORMED)
        result = self.store.check_code(identity, submitted.strip(), self.settings.max_attempts)
        if result is CheckResult.MISSING:
            return VerifyResult(VerifyOutcome.NO_CHALLENGE)
        if result is CheckResult.LOCKED_OUT:
            return VerifyResult(VerifyOutcome.LOCKED_OUT)
        if result is CheckResult.MISMATCHED:
            return VerifyResult(VerifyOutcome.INVALID)
        session_id = generate_session_id()
        self.store.issue_session(session_id, self.settings.session_ttl)
        return VerifyResult(VerifyOutcome.VERIFIED, session_id=session_id)

    def logout(self, session_token: str | None) -> None:
        if session_token:
            self.store.invalidate_session(session_token)
