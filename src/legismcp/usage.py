"""
Tool-call usage telemetry.

The client reports every settled ``tools/call`` to a sink. Sinks are
fire-and-forget: their methods may be plain or async, and any exception they
raise is logged and dropped so telemetry can never change a call's outcome.
"""

import logging
import os
from collections import defaultdict
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger('legismcp')


@runtime_checkable
class UsageSink(Protocol):
    def record_success(self, tool: str, args: dict[str, Any], result: Any, elapsed_ms: float) -> Any: ...

    def record_failure(self, tool: str, args: dict[str, Any], error_message: str, elapsed_ms: float) -> Any: ...


class NullUsageSink:
    def record_success(self, tool, args, result, elapsed_ms):
        pass

    def record_failure(self, tool, args, error_message, elapsed_ms):
        pass


class UsageTracker:
    """In-memory sink that tallies calls per tool."""

    def __init__(self):
        self.tool_usage = defaultdict(lambda: {
            'calls': 0,
            'errors': 0,
            'timeouts': 0,
            'elapsed_ms': 0.0,
        })

    def record_success(self, tool, args, result, elapsed_ms):
        self.tool_usage[tool]['calls'] += 1
        self.tool_usage[tool]['elapsed_ms'] += elapsed_ms

    def record_failure(self, tool, args, error_message, elapsed_ms):
        self.tool_usage[tool]['calls'] += 1
        self.tool_usage[tool]['errors'] += 1
        self.tool_usage[tool]['elapsed_ms'] += elapsed_ms

    def record_timeout(self, tool, args, elapsed_ms):
        self.record_failure(tool, args, "timeout", elapsed_ms)
        self.tool_usage[tool]['timeouts'] += 1

    def print_stats(self):
        for tool, usage in self.tool_usage.items():
            parts = [ part for part in [
                f"Calls={usage['calls']}",
                f"Errors={usage['errors']}" if usage['errors'] else None,
                f"Timeouts={usage['timeouts']}" if usage['timeouts'] else None,
                f"Avg={usage['elapsed_ms'] / usage['calls']:.0f}ms" if usage['calls'] else None,
            ] if part ]
            print(f"{tool}: {', '.join(parts)}")


class HTTPUsageLogger:
    """
    Posts tool-call records to the usage endpoint of the API worker.

    Records are sent to ``<worker_url>/api/mcp/logs`` with the caller's access
    token. Without a token nothing is sent.
    """

    LOG_PATH = "/api/mcp/logs"

    def __init__(
        self,
        worker_url: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        self.worker_url = (worker_url or os.getenv("LEGISMCP_WORKER_URL") or "https://api.example.com").rstrip('/')
        self.access_token = access_token
        self.timeout = timeout
        self._client = client

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    async def log_tool_call(self, entry: dict[str, Any]) -> bool:
        """Send one record. Returns True if the server accepted it; never raises."""
        if not self.access_token:
            logger.warning("HTTPUsageLogger: no access token set, skipping log")
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        try:
            if self._client is not None:
                response = await self._client.post(f"{self.worker_url}{self.LOG_PATH}", json=entry, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.worker_url}{self.LOG_PATH}", json=entry, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Error logging MCP usage: {e}")
            return False

        if not response.is_success:
            logger.error(f"Failed to log MCP usage: {response.status_code} {response.text[:200]}")
            return False
        return True

    async def record_success(self, tool, args, result, elapsed_ms):
        return await self.log_tool_call({
            "tool_name": tool,
            "request_data": args,
            "response_data": result,
            "status": "success",
            "response_time_ms": round(elapsed_ms),
        })

    async def record_failure(self, tool, args, error_message, elapsed_ms):
        return await self.log_tool_call({
            "tool_name": tool,
            "request_data": args,
            "status": "error",
            "error_message": error_message,
            "response_time_ms": round(elapsed_ms),
        })

    async def record_timeout(self, tool, args, elapsed_ms):
        return await self.log_tool_call({
            "tool_name": tool,
            "request_data": args,
            "status": "timeout",
            "response_time_ms": round(elapsed_ms),
        })
