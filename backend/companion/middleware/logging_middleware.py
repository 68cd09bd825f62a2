"""
FastAPI middleware for logging API requests and responses.

Uses pure ASGI middleware (not BaseHTTPMiddleware) for compatibility
with StreamingResponse (the chat event stream).

This middleware logs:
- Request: method, path, query params, client
- Response: status code, processing time
- Bodies only at DEBUG, with chat text redacted and secrets filtered
"""

import json
import logging
import time
from typing import Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, redact_chat_fields, truncate_large_data

logger = logging.getLogger(__name__)

MAX_BODY_LOG_LENGTH = 5000


def _sanitize_body(data: bytes) -> str:
    """Decode a body for logging: JSON gets redacted and filtered, anything else only its size."""
    text = data.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return f"<{len(data)} bytes>"
    sanitized = filter_sensitive_data(redact_chat_fields(payload))
    return truncate_large_data(json.dumps(sanitized, ensure_ascii=False), max_length=MAX_BODY_LOG_LENGTH)


def _extract_error_reason(data: bytes) -> Optional[str]:
    """Pull the error code out of one of our JSON error bodies."""
    try:
        payload = json.loads(data.decode("utf-8", errors="ignore"))
    except json.JSONDecodeError:
        return None
    if isinstance(payload, dict):
        value = payload.get("code")
        if value:
            return str(value)
        if isinstance(payload.get("detail"), list):
            return "validation_error"
    return None


class RequestLoggingMiddleware:
    """Pure ASGI middleware to log all API requests and responses."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Initialize the logging middleware.

        Args:
            app: The ASGI application
            exclude_paths: List of paths to exclude from logging (e.g., ["/health"])
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/health", "/"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI entry point."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")

        if path in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.time()

        request_id = id(scope)
        method = scope.get("method", "UNKNOWN")
        query_string = scope.get("query_string", b"").decode("utf-8", errors="ignore")
        client = scope.get("client")
        client_host = client[0] if client else None

        body_chunks = []
        body_complete = False

        async def logging_receive() -> Message:
            nonlocal body_complete
            message = await receive()
            if message["type"] == "http.request" and not body_complete:
                body_chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    body_complete = True
            return message

        status_code = 0
        response_chunks = []
        streaming = False

        async def logging_send(message: Message) -> None:
            nonlocal status_code, streaming
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                for key, value in message.get("headers", []):
                    if key.lower() == b"content-type" and value.startswith(b"text/event-stream"):
                        streaming = True
                if streaming:
                    logger.info(f"Event stream opened: {method} {path}")
            elif message["type"] == "http.response.body" and not streaming:
                response_chunks.append(message.get("body", b""))
            await send(message)

        logger.debug(
            f"Request started: {method} {path}",
            extra={"extra_fields": {
                "request_id": request_id,
                "method": method,
                "path": path,
                "query_string": query_string or None,
                "client": client_host,
            }}
        )

        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {method} {path} - {type(e).__name__}",
                exc_info=True,
                extra={"extra_fields": {
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "duration_ms": duration_ms,
                }}
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        response_body = b"".join(response_chunks)

        if logger.isEnabledFor(logging.DEBUG):
            request_body = b"".join(body_chunks)
            logger.debug(
                f"Request bodies: {method} {path}",
                extra={"extra_fields": {
                    "request_id": request_id,
                    "request_body": _sanitize_body(request_body) if request_body else None,
                    "response_body": _sanitize_body(response_body) if response_body else None,
                }}
            )

        error_reason = _extract_error_reason(response_body) if status_code >= 400 else None

        if status_code < 400:
            log_level = logging.INFO
        elif status_code < 500:
            log_level = logging.WARNING
        else:
            log_level = logging.ERROR

        completion_message = f"Request completed: {method} {path} - {status_code} ({duration_ms:.2f}ms)"
        if error_reason:
            completion_message += f" | error_reason={error_reason}"

        logger.log(
            log_level,
            completion_message,
            extra={"extra_fields": {
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "error_reason": error_reason,
            }}
        )
