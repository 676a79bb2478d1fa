from __future__ import annotations  # LLM request gateway module

import json
import logging
import os
import threading
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from config import CHAT_KEY, AppConfig, LlmRoute, bind_model, resolve_route


logger = logging.getLogger(__name__)  # Module logger setup


_MODEL_LOCKS: Dict[str, threading.Lock] = {}
_MODEL_LOCKS_GUARD = threading.Lock()

GATEWAY_ERROR_KINDS = ("quota", "timeout", "upstream", "invalid")


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> "HttpResponse": ...


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class LlmGatewayError(RuntimeError):  # Gateway error tagged with a failure kind
    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind if kind in GATEWAY_ERROR_KINDS else "upstream"


class LlmReply(BaseModel):
    content: str
    provider: str
    cached: bool = False
    degraded: bool = False


T = TypeVar("T", bound=BaseModel)


def _lock_for(cfg: LlmRoute) -> threading.Lock:
    key = cfg.name or f"{cfg.base_url}{cfg.endpoint}"
    with _MODEL_LOCKS_GUARD:
        lock = _MODEL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _MODEL_LOCKS[key] = lock
    return lock


def _error_for_status(status: int) -> LlmGatewayError:  # Map HTTP status to a gateway error kind
    if status == 429:
        return LlmGatewayError("quota", "LLM quota exhausted")
    if status in (408, 504):
        return LlmGatewayError("timeout", f"LLM timed out with status {status}")
    if status >= 500:
        return LlmGatewayError("upstream", f"LLM returned status {status}")
    return LlmGatewayError("invalid", f"LLM rejected request with status {status}")


def chat(
    messages: Sequence[Dict[str, str]],
    opts: Optional[Dict[str, Any]] = None,
    *,
    cfg: LlmRoute,
    client: Optional[HttpClient] = None,
) -> LlmReply:
    """Send ``messages`` to the configured route and return the reply text.

    ``opts`` accepts ``temperature``, ``max_tokens`` and ``timeout_ms``.
    Transport failures and upstream statuses are raised as
    :class:`LlmGatewayError` with a ``kind`` of quota, timeout, upstream or
    invalid. Transient failures are retried ``cfg.max_retries`` times.
    """

    def _execute() -> LlmReply:
        options = dict(opts or {})
        timeout_ms = options.pop("timeout_ms", None)
        timeout = float(timeout_ms) / 1000.0 if timeout_ms else cfg.timeout_s
        payload: Dict[str, Any] = {"model": cfg.model, "messages": _normalize_messages(messages)}
        payload.update(options)
        headers = {"Content-Type": "application/json"}
        if cfg.api_key_env:
            api_key = os.getenv(cfg.api_key_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
        headers.update(cfg.extra_headers)
        attempts = cfg.max_retries + 1
        preview = _preview(payload["messages"])
        if len(preview) > 120:
            preview = preview[:117] + "..."
        last_error: Optional[LlmGatewayError] = None
        for attempt in range(attempts):
            logger.info(
                "LLM request send route=%s model=%s attempt=%d/%d preview=%s",
                cfg.name,
                cfg.model,
                attempt + 1,
                attempts,
                preview,
            )
            try:
                response, close_cb = _post(f"{cfg.base_url}{cfg.endpoint}", payload, headers, timeout, client)
            except httpx.TimeoutException as exc:
                logger.warning("LLM transport timeout: %s", exc)
                last_error = LlmGatewayError("timeout", "LLM request timed out")
                continue
            except httpx.HTTPError as exc:
                logger.error("LLM transport failure: %s", exc)
                last_error = LlmGatewayError("upstream", "LLM transport failed")
                continue
            try:
                if response.status_code >= 400:
                    logger.error("LLM error status: %s", response.status_code)
                    last_error = _error_for_status(response.status_code)
                    if last_error.kind in ("quota", "invalid"):
                        break
                    continue
                try:
                    data = response.json()
                except ValueError as exc:
                    logger.error("Invalid JSON payload from LLM: %s", exc)
                    raise LlmGatewayError("invalid", "LLM payload was not JSON") from exc
                content = _extract_content(data)
            finally:
                _close_safely(close_cb)
            logger.info("LLM request done route=%s model=%s attempt=%d", cfg.name, cfg.model, attempt + 1)
            cached = bool(data.get("cached", False)) if isinstance(data, dict) else False
            return LlmReply(content=content, provider=cfg.provider, cached=cached)
        raise last_error or LlmGatewayError("upstream", "LLM request made no attempts")

    if getattr(cfg, "sequential", False):
        lock = _lock_for(cfg)
        with lock:
            return _execute()
    return _execute()


def chat_json(
    chat_fn: Callable[..., LlmReply],
    messages: Sequence[Dict[str, str]],
    schema: Type[T],
    opts: Optional[Dict[str, Any]] = None,
    *,
    retries: int = 1,
) -> T:
    """Call ``chat_fn`` and parse its reply as ``schema``.

    Unparseable replies are retried with a corrective system hint, then
    raised as ``LlmGatewayError("invalid")``.
    """

    base_messages = list(messages)
    last_error_text: Optional[str] = None
    for attempt in range(retries + 1):
        attempt_messages = list(base_messages)
        if attempt > 0:
            attempt_messages.append({"role": "system", "content": _retry_hint(last_error_text)})
        reply = chat_fn(attempt_messages, opts)
        try:
            return _validate(schema, reply.content)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("LLM output validation failed: %s", exc)
            last_error_text = str(exc)
    raise LlmGatewayError("invalid", "LLM output validation failed")


def bind_chat_route(app_cfg: AppConfig, target: str = CHAT_KEY, client: Optional[HttpClient] = None) -> LlmRoute:
    """Bind ``chat`` for the route registered under ``target``."""

    route = resolve_route(app_cfg, target)

    def _chat(messages: Sequence[Dict[str, str]], opts: Optional[Dict[str, Any]] = None) -> LlmReply:
        return chat(messages, opts, cfg=route, client=client)

    bind_model(target, _chat)
    return route


def _post(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float, client: Optional[HttpClient]) -> Tuple[HttpResponse, Optional[Callable[[], None]]]:  # Dispatch HTTP request
    if client is not None:
        response = client.post(url, json=payload, headers=headers, timeout=timeout)
        return response, None
    http_client = httpx.Client(timeout=timeout)
    try:
        response = http_client.post(url, json=payload, headers=headers)
    except Exception:
        http_client.close()
        raise
    return response, http_client.close


def _close_safely(close_cb: Optional[Callable[[], None]]) -> None:  # Close HTTP client callback when provided
    if close_cb is not None:
        close_cb()


def _normalize_messages(messages: Sequence[Dict[str, str]]) -> list[Dict[str, str]]:  # Ensure message payload shape
    normalized: list[Dict[str, str]] = []
    for item in messages:
        if not isinstance(item, dict):
            raise LlmGatewayError("invalid", "Each chat message must be a dict with role/content")
        role = str(item.get("role", "")).strip()
        content = str(item.get("content", ""))
        if not role:
            raise LlmGatewayError("invalid", "Chat message missing role")
        normalized.append({"role": role, "content": content})
    return normalized


def _preview(messages: Sequence[Dict[str, str]]) -> str:  # Build preview string for logging
    for message in messages:
        text = message.get("content", "").strip()
        if text:
            return text.splitlines()[0]
    return ""


def _extract_content(data: Any) -> str:  # Extract message content from LLM response
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise LlmGatewayError("invalid", "LLM response missing content")


def _validate(schema: Type[T], content: str) -> T:  # Parse JSON content with schema
    cleaned = _strip_code_fences(content)
    try:
        return schema.model_validate_json(cleaned)
    except (json.JSONDecodeError, ValidationError):
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if 0 <= start < end:
            return schema.model_validate_json(cleaned[start : end + 1])
        raise


def _strip_code_fences(content: str) -> str:  # Remove common markdown fences from LLM output
    text = content.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines:
            lines = lines[1:]
            while lines and lines[0].strip() == "":
                lines = lines[1:]
            while lines and lines[-1].strip() == "":
                lines = lines[:-1]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return text


def _retry_hint(error_text: Optional[str]) -> str:  # Compose retry instructions including last error
    base = "The previous reply failed validation."
    if error_text:
        truncated = error_text.splitlines()[0].strip()
        if len(truncated) > 200:
            truncated = truncated[:197] + "..."
        base += f" Reason: {truncated}."
    return base + " Return a single JSON object that matches the requested fields."
