"""
Async client session for the official Linear MCP server.

One session per credential. Transport defaults to streamable HTTP with the
API key sent as a bearer token; the `mcp-remote` stdio bridge is available
for environments that already run it. Failures are reported once and never
retried here; callers resubmit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import time
from datetime import timedelta
from typing import Any

from mcp.client.session import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client

logger = logging.getLogger(__name__)

DEFAULT_OFFICIAL_MCP_URL = "https://mcp.linear.app/mcp"
DEFAULT_TRANSPORT = "http"
DEFAULT_STDIO_COMMAND = "npx"
DEFAULT_STDIO_ARGS_PREFIX = ["-y", "mcp-remote"]
AUTH_HEADER_ENV = "LINEAR_PLAN_AUTH_HEADER"


class OfficialToolError(RuntimeError):
    """Raised when the official MCP call fails."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class OfficialMcpSession:
    """Lazily connected MCP client session bound to one Linear credential."""

    def __init__(
        self,
        credential: str,
        transport: str | None = None,
        url: str | None = None,
        command: str | None = None,
        args: list[str] | None = None,
        timeout_seconds: float = 30.0,
        sse_read_timeout_seconds: float = 300.0,
        read_timeout_seconds: float = 30.0,
    ):
        self._credential = credential
        self._transport = (transport or os.getenv("LINEAR_OFFICIAL_MCP_TRANSPORT", DEFAULT_TRANSPORT)).lower()
        self._url = url or os.getenv("LINEAR_OFFICIAL_MCP_URL", DEFAULT_OFFICIAL_MCP_URL)
        self._command = command or os.getenv("LINEAR_OFFICIAL_MCP_COMMAND", DEFAULT_STDIO_COMMAND)
        self._args = args or self._parse_stdio_args_from_env(default_url=self._url)
        self._timeout_seconds = timeout_seconds
        self._sse_read_timeout_seconds = sse_read_timeout_seconds
        self._read_timeout_seconds = read_timeout_seconds

        if self._transport not in {"stdio", "http"}:
            raise ValueError("LINEAR_OFFICIAL_MCP_TRANSPORT must be one of: stdio, http")

        self._lock = asyncio.Lock()
        self._transport_cm: Any = None
        self._session_cm: Any = None
        self._session: ClientSession | None = None

        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None
        self._last_connected_at: float | None = None

    @staticmethod
    def _parse_stdio_args_from_env(default_url: str) -> list[str]:
        default_args = [
            *DEFAULT_STDIO_ARGS_PREFIX,
            default_url,
            "--header",
            f"Authorization:${{{AUTH_HEADER_ENV}}}",
        ]
        raw = os.getenv("LINEAR_OFFICIAL_MCP_ARGS")
        if not raw:
            return default_args

        # Prefer JSON array for exact argument boundaries.
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except ValueError:
            pass

        try:
            return shlex.split(raw)
        except ValueError:
            logger.warning("Ignoring invalid LINEAR_OFFICIAL_MCP_ARGS value; using default args")
            return default_args

    @property
    def _auth_header(self) -> str:
        return f"Bearer {self._credential}"

    async def _connect(self) -> None:
        if self._session is not None:
            return

        if self._transport == "stdio":
            env = dict(os.environ)
            env[AUTH_HEADER_ENV] = self._auth_header
            params = StdioServerParameters(command=self._command, args=self._args, env=env)
            self._transport_cm = stdio_client(params)
        else:
            self._transport_cm = streamablehttp_client(
                self._url,
                headers={"Authorization": self._auth_header},
                timeout=self._timeout_seconds,
                sse_read_timeout=self._sse_read_timeout_seconds,
                terminate_on_close=False,
            )
        transport_streams = await self._transport_cm.__aenter__()
        if len(transport_streams) == 3:
            read_stream, write_stream, _ = transport_streams
        elif len(transport_streams) == 2:
            read_stream, write_stream = transport_streams
        else:
            raise RuntimeError("official MCP transport returned unexpected stream tuple")

        self._session_cm = ClientSession(
            read_stream,
            write_stream,
            read_timeout_seconds=timedelta(seconds=self._read_timeout_seconds),
        )
        self._session = await self._session_cm.__aenter__()
        await self._session.initialize()
        self._last_connected_at = time.time()

    async def _disconnect(self) -> None:
        if self._session_cm is not None:
            try:
                await self._session_cm.__aexit__(None, None, None)
            except Exception as exc:
                self._log_cleanup_exception("Official MCP session cleanup failed", exc)
        if self._transport_cm is not None:
            try:
                await self._transport_cm.__aexit__(None, None, None)
            except Exception as exc:
                self._log_cleanup_exception("Official MCP transport cleanup failed", exc)

        self._session = None
        self._session_cm = None
        self._transport_cm = None

    @staticmethod
    def _log_cleanup_exception(prefix: str, exc: Exception) -> None:
        message = str(exc)
        if "Attempted to exit cancel scope in a different task" in message:
            logger.debug("%s: %s", prefix, exc)
            return
        logger.warning("%s: %s", prefix, exc)

    def _normalize_result(self, result: Any) -> Any:
        if getattr(result, "isError", False):
            text = self._extract_text(result)
            raise OfficialToolError(
                "official_tool_error", text or "official MCP returned an error"
            )

        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            return structured

        text = self._extract_text(result)
        if text:
            try:
                return json.loads(text)
            except ValueError:
                return {"text": text}

        if hasattr(result, "model_dump"):
            return result.model_dump()
        return result

    @staticmethod
    def _extract_text(result: Any) -> str:
        content = getattr(result, "content", None) or []
        texts: list[str] = []
        for block in content:
            if getattr(block, "type", None) == "text":
                text = getattr(block, "text", "")
                if text:
                    texts.append(text)
        return "\n".join(texts).strip()

    def _record_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        self._last_failure_at = time.time()
        self._last_error = f"{exc.__class__.__name__}: {exc}"
        logger.warning("Official MCP call failed (%s): %s", exc.__class__.__name__, exc)

    def _record_success(self) -> None:
        self._failure_count = 0
        self._last_error = None

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        args = arguments or {}
        async with self._lock:
            try:
                await self._connect()
                if self._session is None:
                    raise RuntimeError("official MCP session unavailable")
                result = await self._session.call_tool(name, arguments=args)
                normalized = self._normalize_result(result)
            except OfficialToolError:
                # Semantic tool errors are not transport failures.
                raise
            except Exception as exc:
                self._record_failure(exc)
                await self._disconnect()
                raise OfficialToolError(
                    "official_unavailable",
                    f"official MCP call failed for tool '{name}': {exc}",
                ) from exc
            self._record_success()
            return normalized

    def get_health(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "transport": self._transport,
            "url": self._url,
            "connected": self._session is not None,
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
            "lastConnectedAt": self._last_connected_at,
        }
        if self._transport == "stdio":
            health["command"] = self._command
            health["args"] = self._args
        return health

    async def close(self) -> None:
        async with self._lock:
            await self._disconnect()
