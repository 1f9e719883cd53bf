from __future__ import annotations

import httpx
import openai


def openrouter_headers(*, app_title: str = "", referer: str = "") -> dict[str, str]:
    headers: dict[str, str] = {}
    if referer:
        headers["HTTP-Referer"] = referer
    if app_title:
        headers["X-Title"] = app_title
    return headers


def _message_from_body(body: object) -> str | None:
    # The SDK unwraps {"error": {...}} before storing the body, but raw
    # bodies still show up from some proxies.
    if not isinstance(body, dict):
        return None
    nested = body.get("error")
    if isinstance(nested, dict) and nested.get("message"):
        return str(nested["message"])
    if body.get("message"):
        return str(body["message"])
    return None


def describe_error(exc: BaseException) -> str:
    """Reduce a backend exception to the message a user should see."""
    if isinstance(exc, openai.APIStatusError):
        return _message_from_body(exc.body) or exc.message
    if isinstance(exc, openai.APITimeoutError):
        return "Request timed out"
    if isinstance(exc, openai.APIConnectionError):
        return f"Connection error: {exc.__cause__}" if exc.__cause__ else exc.message
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            detail = _message_from_body(exc.response.json())
        except ValueError:
            detail = None
        return detail or f"HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__
