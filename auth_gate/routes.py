"""
HTTP surface. The gate router answers the reverse proxy's forward-auth subrequest; the auth
router serves the challenge pages under the configured prefix (default /_auth_code):
GET /login, POST /request-code, POST /verify-code, GET /logout.
"""
import logging
import math
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from auth_gate.audit import (
    EVENT_CODE_DELIVERY_FAILED,
    EVENT_CODE_RATE_LIMITED,
    EVENT_CODE_REQUESTED,
    EVENT_GATE_DENIED,
    EVENT_LOGOUT,
    EVENT_VERIFY_FAIL,
    EVENT_VERIFY_LOCKOUT,
    EVENT_VERIFY_MALFORMED,
    EVENT_VERIFY_NO_CHALLENGE,
    EVENT_VERIFY_OK,
    get_client_ip,
    log_audit,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
)
from auth_gate.flow import AuthFlow, GateOutcome, RequestOutcome, VerifyOutcome
from auth_gate.pages import logged_out_page, login_page, verify_page

logger = logging.getLogger(__name__)

GATE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_flow(request: Request) -> AuthFlow:
    return request.app.state.flow


def request_host(request: Request) -> str | None:
    """Public host the caller used: X-Forwarded-Host from the proxy, else Host."""
    forwarded = request.headers.get("x-forwarded-host", "").split(",")[0].strip()
    return forwarded or request.headers.get("host") or None


def safe_redirect(url: str | None, allowed_host: str | None) -> str:
    """
    Root-relative paths pass, as do absolute http(s) URLs whose host is allowed_host.
    Anything else becomes "/".
    """
    if not url or not url.strip():
        return "/"
    url = url.strip()
    if "\\" in url or any(ord(c) < 0x20 for c in url):
        return "/"
    parts = urlsplit(url)
    if parts.scheme in ("http", "https") and parts.netloc:
        if allowed_host and parts.netloc.lower() == allowed_host.lower():
            return url
        return "/"
    if not parts.scheme and not parts.netloc and url.startswith("/") and not url.startswith("//"):
        return url
    return "/"


def _no_identity() -> PlainTextResponse:
    logger.warning("Rejecting challenge request: client address unavailable")
    return PlainTextResponse("Unable to determine client address", status_code=400)


def build_auth_router(prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix)

    @router.get("/login", response_class=HTMLResponse)
    def login(request: Request, redirect_url: str | None = None):
        """Entry page of the challenge."""
        return HTMLResponse(login_page(prefix, safe_redirect(redirect_url, request_host(request))))

    @router.post("/request-code", response_class=HTMLResponse)
    def request_code(
        request: Request,
        redirect_url: str = Form(""),
        flow: AuthFlow = Depends(get_flow),
    ):
        """Issue a code and deliver it through the notifier; show the verify page on success."""
        ip = get_client_ip(request)
        if ip is None:
            return _no_identity()
        target = safe_redirect(redirect_url, request_host(request))
        result = flow.request_code(ip)

        if result.outcome is RequestOutcome.RATE_LIMITED:
            log_audit(EVENT_CODE_RATE_LIMITED, ip=ip, outcome=OUTCOME_FAIL)
            retry_after = max(1, math.ceil(result.retry_after or 0))
            return HTMLResponse(
                verify_page(
                    prefix,
                    target,
                    flow.settings.code_length,
                    error=f"A code was sent recently. Please wait {retry_after}s before requesting another.",
                ),
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )

        if result.outcome is RequestOutcome.DELIVERY_FAILED:
            log_audit(EVENT_CODE_DELIVERY_FAILED, ip=ip, outcome=OUTCOME_FAIL)
            return HTMLResponse(
                login_page(prefix, target, error="Failed to send notification. Please try again later."),
                status_code=502,
            )

        log_audit(EVENT_CODE_REQUESTED, ip=ip, outcome=OUTCOME_SUCCESS)
        return HTMLResponse(verify_page(prefix, target, flow.settings.code_length, message="Code sent"))

    @router.post("/verify-code")
    def verify_code(
        request: Request,
        code: str | None = Form(None),
        redirect_url: str = Form(""),
        flow: AuthFlow = Depends(get_flow),
    ):
        """Verify a submitted code. Success sets the session cookie and redirects back."""
        ip = get_client_ip(request)
        if ip is None:
            return _no_identity()
        target = safe_redirect(redirect_url, request_host(request))
        settings = flow.settings
        result = flow.verify_code(ip, code)

        if result.outcome is VerifyOutcome.MALFORMED:
            log_audit(EVENT_VERIFY_MALFORMED, ip=ip, outcome=OUTCOME_FAIL)
            return HTMLResponse(
                verify_page(
                    prefix,
                    target,
                    settings.code_length,
                    error=f"Enter the {settings.code_length}-digit code.",
                ),
                status_code=400,
            )
        if result.outcome is VerifyOutcome.NO_CHALLENGE:
            log_audit(EVENT_VERIFY_NO_CHALLENGE, ip=ip, outcome=OUTCOME_FAIL)
            return HTMLResponse(
                login_page(prefix, target, error="Code expired or not requested."),
                status_code=401,
            )
        if result.outcome is VerifyOutcome.LOCKED_OUT:
            log_audit(EVENT_VERIFY_LOCKOUT, ip=ip, outcome=OUTCOME_FAIL)
            return HTMLResponse(
                login_page(prefix, target, error="Too many attempts. Request a new code."),
                status_code=403,
            )
        if result.outcome is VerifyOutcome.INVALID:
            log_audit(EVENT_VERIFY_FAIL, ip=ip, outcome=OUTCOME_FAIL)
            return HTMLResponse(
                verify_page(prefix, target, settings.code_length, error="Invalid code."),
                status_code=401,
            )

        log_audit(EVENT_VERIFY_OK, ip=ip, outcome=OUTCOME_SUCCESS)
        response = RedirectResponse(url=target, status_code=302)
        response.set_cookie(
            key=settings.cookie_name,
            value=result.session_id,
            max_age=int(settings.session_ttl),
            expires=int(settings.session_ttl),
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/logout", response_class=HTMLResponse)
    def logout(request: Request, flow: AuthFlow = Depends(get_flow)):
        """End the caller's session and clear the cookie."""
        flow.logout(request.cookies.get(flow.settings.cookie_name))
        log_audit(EVENT_LOGOUT, ip=get_client_ip(request), outcome=OUTCOME_SUCCESS)
        response = HTMLResponse(logged_out_page(prefix))
        response.delete_cookie(flow.settings.cookie_name, path="/", secure=True, httponly=True, samesite="lax")
        return response

    return router


gate_router = APIRouter()


@gate_router.api_route("/{path:path}", methods=GATE_METHODS)
def gate(request: Request, flow: AuthFlow = Depends(get_flow)):
    """
    Forward-auth check. 200 lets the proxy forward the original request; anything else is
    returned to the client instead.
    """
    result = flow.gate(
        forwarded_uri=request.headers.get("x-forwarded-uri"),
        forwarded_host=request.headers.get("x-forwarded-host"),
        forwarded_proto=request.headers.get("x-forwarded-proto"),
        session_token=request.cookies.get(flow.settings.cookie_name),
    )
    if result.outcome is GateOutcome.PASS:
        return Response(status_code=200)
    log_audit(EVENT_GATE_DENIED, ip=get_client_ip(request), outcome=OUTCOME_FAIL)
    if result.outcome is GateOutcome.UNAUTHORIZED:
        return PlainTextResponse("Unauthorized (Missing X-Forwarded-Host)", status_code=401)
    return RedirectResponse(url=result.location, status_code=302)
