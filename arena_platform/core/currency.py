"""
Per-request currency resolution and response normalization.

The request currency comes from the ``X-Currency`` header, else the
``currency`` query parameter. JSON responses on non-excluded paths get an
``X-Currency`` header and a ``currency`` field in the body unless the
handler already chose one.
"""
import json
from typing import Any, Iterable, List, Optional, Sequence
from urllib.parse import parse_qs

import structlog
from fastapi import Request
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from arena_platform.config import get_settings
from arena_platform.core.exceptions import InvalidCurrencyError

logger = structlog.get_logger(__name__)

CURRENCY_HEADER = "x-currency"
CURRENCY_QUERY_PARAM = "currency"
CURRENCY_KEYS = ("currency", "request_currency", "client_currency", "wallet_currency")
STATE_KEY = "request_currency"
APPLIED_FLAG = "arena.response_currency_applied"


def _raw_request_currency(headers: Headers, query_string: bytes) -> Optional[str]:
    value = headers.get(CURRENCY_HEADER)
    if not value:
        values = parse_qs(query_string.decode("latin-1")).get(CURRENCY_QUERY_PARAM)
        value = values[0] if values else None
    if value is None:
        return None
    return value.strip().upper() or None


def resolve_request_currency(
    headers: Headers,
    query_string: bytes,
    supported: Sequence[str],
    strict: bool = False,
) -> Optional[str]:
    """
    Resolve the currency a request asks for.

    Args:
        headers: Request headers
        query_string: Raw query string
        supported: Accepted currency codes, upper-case
        strict: Raise instead of returning None for a missing or unsupported code

    Returns:
        Optional[str]: Upper-case currency code, or None
    """
    currency = _raw_request_currency(headers, query_string)
    if currency is None:
        if strict:
            raise InvalidCurrencyError()
        return None
    if currency not in supported:
        if strict:
            raise InvalidCurrencyError(f"Unsupported currency: {currency}")
        return None
    return currency


def normalize_excluded_paths(paths: Iterable[str]) -> List[str]:
    """Strip blanks and force a leading slash on every prefix."""
    normalized = []
    for path in paths:
        path = path.strip()
        if not path:
            continue
        normalized.append(path if path.startswith("/") else f"/{path}")
    return normalized


def is_excluded_path(path: str, excluded: Sequence[str]) -> bool:
    return any(path.startswith(prefix) for prefix in excluded)


def has_currency(body: Any) -> bool:
    return isinstance(body, dict) and any(key in body for key in CURRENCY_KEYS)


def attach_currency(body: Any, currency: Optional[str]) -> Any:
    """
    Put ``currency`` on a response body.

    - no currency resolved, null body, or a currency key already present: unchanged
    - object: ``currency`` merged in
    - anything else: wrapped as ``{"currency": ..., "data": body}``
    """
    if not currency or body is None or has_currency(body):
        return body
    if isinstance(body, dict):
        return {**body, "currency": currency}
    return {"currency": currency, "data": body}


def _is_json(headers: Headers) -> bool:
    content_type = headers.get("content-type", "").split(";")[0].strip().lower()
    return content_type == "application/json" or content_type.endswith("+json")


class ResponseCurrencyMiddleware:
    """
    Pure ASGI middleware that normalizes JSON responses.

    JSON bodies are buffered, rewritten and re-sent with a corrected
    Content-Length. Other responses stream through untouched. The status
    code is never changed, and a request is only processed once even if the
    middleware is mounted twice.
    """

    def __init__(
        self,
        app: ASGIApp,
        excluded_paths: Optional[Iterable[str]] = None,
        supported_currencies: Optional[Iterable[str]] = None,
    ) -> None:
        settings = get_settings()
        self.app = app
        self.excluded_paths = normalize_excluded_paths(
            excluded_paths if excluded_paths is not None else settings.get_currency_excluded_paths()
        )
        self.supported_currencies = [
            code.upper()
            for code in (
                supported_currencies
                if supported_currencies is not None
                else settings.get_supported_currencies()
            )
        ]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get(APPLIED_FLAG):
            await self.app(scope, receive, send)
            return
        scope[APPLIED_FLAG] = True

        currency = resolve_request_currency(
            Headers(scope=scope), scope.get("query_string", b""), self.supported_currencies
        )
        scope.setdefault("state", {})[STATE_KEY] = currency

        if currency is None or is_excluded_path(scope.get("path", ""), self.excluded_paths):
            await self.app(scope, receive, send)
            return

        start_message: Optional[Message] = None
        passthrough = False
        chunks: List[bytes] = []

        async def send_wrapper(message: Message) -> None:
            nonlocal start_message, passthrough

            if message["type"] == "http.response.start":
                if not _is_json(Headers(raw=message.get("headers", []))):
                    passthrough = True
                    await send(message)
                    return
                start_message = message
                return

            if message["type"] != "http.response.body" or passthrough or start_message is None:
                await send(message)
                return

            chunks.append(message.get("body", b""))
            if message.get("more_body", False):
                return

            body = self._rewrite(b"".join(chunks), currency)
            headers = MutableHeaders(scope=start_message)
            headers["content-length"] = str(len(body))
            headers["x-currency"] = currency
            await send(start_message)
            await send({"type": "http.response.body", "body": body, "more_body": False})

        await self.app(scope, receive, send_wrapper)

    @staticmethod
    def _rewrite(raw: bytes, currency: str) -> bytes:
        if not raw:
            return raw
        try:
            body = json.loads(raw)
        except ValueError:
            logger.warning("response_currency_unparseable_json", size=len(raw))
            return raw
        updated = attach_currency(body, currency)
        if updated is body:
            return raw
        return json.dumps(updated, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def require_currency(request: Request) -> str:
    """
    FastAPI dependency for routes that must know the request currency.

    Raises:
        InvalidCurrencyError: If the request names no supported currency
    """
    currency = getattr(request.state, STATE_KEY, None)
    if currency:
        return currency
    return resolve_request_currency(
        request.headers,
        request.scope.get("query_string", b""),
        get_settings().get_supported_currencies(),
        strict=True,
    )
