"""reqpost executor - request dispatch and response normalisation."""

import json
import logging
import socket
import time
from dataclasses import dataclass
from typing import Any

import requests

from reqpost.core import DEFAULT_TIMEOUT, build_request
from reqpost.models import ApiRequest, ApiResponse, ScriptResult
from reqpost.script import ScriptEngine, validate_script_syntax
from reqpost.variables import StaticVariables, VariableResolver, VariableSource

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out"
DNS_MESSAGE = "Could not resolve host"
REFUSED_MESSAGE = "Connection refused"
UNKNOWN_MESSAGE = "Unknown error"

_DNS_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "failed to resolve",
    "name resolution",
    "temporary failure in name resolution",
)


@dataclass
class DispatchResult:
    """Everything one send produced: the (request, response) pair plus scripts."""

    request: ApiRequest
    response: ApiResponse
    pre_request: ScriptResult | None = None
    test: ScriptResult | None = None


# ── transport ────────────────────────────────────────────────────────────


def execute_request(transport: dict, follow_redirects: bool = True) -> requests.Response:
    """Issue the HTTP call described by a build_request() dict.

    Transport failures surface as requests exceptions.
    """
    kwargs: dict[str, Any] = {
        "method": transport["method"],
        "url": transport["url"],
        "headers": transport.get("headers") or {},
        "timeout": transport.get("timeout", DEFAULT_TIMEOUT),
        "allow_redirects": follow_redirects,
    }

    if "files" in transport:
        # (None, value) tuples make requests send plain multipart fields
        kwargs["files"] = {k: (None, v) for k, v in transport["files"].items()}
    elif "data" in transport:
        data = transport["data"]
        if transport.get("body_type") == "json" and not isinstance(data, str):
            kwargs["json"] = data
        else:
            kwargs["data"] = data.encode("utf-8") if isinstance(data, str) else data

    return requests.request(**kwargs)


def _causes(error: BaseException):
    """Walk an exception, its args, reasons and causes."""
    seen: set[int] = set()
    stack: list[Any] = [error]
    while stack:
        current = stack.pop()
        if not isinstance(current, BaseException) or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend(current.args)
        stack.append(getattr(current, "reason", None))
        stack.append(current.__cause__)
        stack.append(current.__context__)


def classify_transport_error(error: requests.exceptions.RequestException) -> str:
    """Human-readable status text for a transport failure with no response."""
    if isinstance(error, requests.exceptions.Timeout):
        return TIMEOUT_MESSAGE

    for cause in _causes(error):
        if isinstance(cause, socket.gaierror) or type(cause).__name__ == "NameResolutionError":
            return DNS_MESSAGE
        if isinstance(cause, ConnectionRefusedError):
            return REFUSED_MESSAGE

    text = str(error)
    lowered = text.lower()
    if any(hint in lowered for hint in _DNS_HINTS):
        return DNS_MESSAGE
    if "connection refused" in lowered:
        return REFUSED_MESSAGE
    return text or UNKNOWN_MESSAGE


def normalize_headers(headers: Any) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v) for k, v in dict(headers).items()}


def parse_body(resp: requests.Response) -> Any:
    """Parsed JSON when possible, else the text."""
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        return resp.text


# ── dispatcher ───────────────────────────────────────────────────────────


class Dispatcher:
    """Sends ApiRequests and always hands back an ApiResponse.

    Transport failures become response-shaped results (status 0 when no
    response arrived). Anything that is not a requests exception propagates.
    """

    def __init__(
        self,
        variables: VariableSource | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        follow_redirects: bool = True,
        run_pre_request: bool = False,
    ):
        self.variables = variables or StaticVariables()
        self.resolver = VariableResolver(self.variables)
        self.scripts = ScriptEngine(self.variables)
        self.timeout = timeout
        self.follow_redirects = follow_redirects
        self.run_pre_request = run_pre_request

    def send(self, request: ApiRequest, local_overrides: dict[str, str] | None = None) -> ApiResponse:
        return self.dispatch(request, local_overrides).response

    def dispatch(
        self,
        request: ApiRequest,
        local_overrides: dict[str, str] | None = None,
    ) -> DispatchResult:
        """Run the full pipeline for request.

        local_overrides sit above the environment; when the pre-request
        script runs, its environment writes sit between the two.
        """
        request = request.model_copy(deep=True)
        start = time.monotonic()

        pre_result = None
        overrides: dict[str, str] = {}
        if request.pre_request_script:
            check = validate_script_syntax(request.pre_request_script)
            if not check["valid"]:
                logger.warning("Pre-request script has syntax error: %s", check["error"])
            elif self.run_pre_request:
                pre_result = self.scripts.run_pre_request(request)
                if pre_result.success:
                    overrides = {k: str(v) for k, v in (pre_result.data or {}).items() if v is not None}
        if local_overrides:
            overrides.update(local_overrides)

        transport = build_request(request, self.resolver, overrides, timeout=self.timeout)
        logger.info("%s %s", transport["method"], transport["url"])

        try:
            resp = execute_request(transport, follow_redirects=self.follow_redirects)
        except requests.exceptions.RequestException as e:
            response = self._error_response(request, e, start)
        else:
            response = self._success_response(request, resp, start)

        test_result = None
        if request.test_script:
            check = validate_script_syntax(request.test_script)
            if not check["valid"]:
                logger.warning("Test script has syntax error: %s", check["error"])
                test_result = ScriptResult(success=False, error=check["error"], logs=[f"Error: {check['error']}"])
            else:
                test_result = self.scripts.run_test(request, response)
                if test_result.data is not None:
                    response.test_results = list(test_result.data)

        return DispatchResult(request=request, response=response, pre_request=pre_result, test=test_result)

    def _success_response(self, request: ApiRequest, resp: requests.Response, start: float) -> ApiResponse:
        elapsed = int((time.monotonic() - start) * 1000)
        headers = normalize_headers(resp.headers)
        logger.info("-> %s in %sms", resp.status_code, elapsed)
        return ApiResponse(
            request_id=request.id,
            status=resp.status_code,
            status_text=resp.reason or "",
            headers=headers,
            data=parse_body(resp),
            size=len(resp.content or b""),
            time=elapsed,
            content_type=headers.get("content-type") or "application/json",
        )

    def _error_response(
        self,
        request: ApiRequest,
        error: requests.exceptions.RequestException,
        start: float,
    ) -> ApiResponse:
        elapsed = int((time.monotonic() - start) * 1000)
        resp = error.response
        if resp is not None:
            logger.warning("Request %r failed with response %s: %s", request.name, resp.status_code, error)
            return ApiResponse(
                request_id=request.id,
                status=resp.status_code,
                status_text=resp.reason or classify_transport_error(error),
                headers=normalize_headers(resp.headers),
                data=parse_body(resp) or None,
                size=0,
                time=elapsed,
            )

        status_text = classify_transport_error(error)
        logger.warning("Request %r failed: %s", request.name, status_text)
        return ApiResponse(
            request_id=request.id,
            status=0,
            status_text=status_text,
            headers={},
            data=None,
            size=0,
            time=elapsed,
        )
