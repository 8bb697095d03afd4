"""
Usage statistics for an MCP server instance.

Counters are mutated once per completed request from many worker threads
and event-loop tasks at once, so every update happens under one lock.
"""

import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class StatsCollector:
    """Thread-safe request, capability and error counters."""

    def __init__(self, enabled: bool = True):
        self._lock = threading.Lock()
        self._enabled = enabled
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._started_at = time.time()
        self._last_request_at: Optional[float] = None
        self._total_requests = 0
        self._failed_requests = 0
        self._by_method: Counter = Counter()
        self._errors_by_code: Counter = Counter()
        self._total_latency_ms = 0.0
        self._max_latency_ms = 0.0
        self._tool_calls: Counter = Counter()
        self._resource_reads: Counter = Counter()
        self._prompt_generations: Counter = Counter()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def reset(self) -> None:
        with self._lock:
            self._reset_counters()

    def record_request(
        self, method: Optional[str], duration_ms: float, error_code: Optional[int] = None
    ) -> None:
        """Record one completed (or errored) request."""
        if not self._enabled:
            return
        with self._lock:
            self._total_requests += 1
            self._by_method[method or "<invalid>"] += 1
            self._total_latency_ms += duration_ms
            self._max_latency_ms = max(self._max_latency_ms, duration_ms)
            self._last_request_at = time.time()
            if error_code is not None:
                self._failed_requests += 1
                self._errors_by_code[error_code] += 1

    def record_tool_invocation(self, name: str) -> None:
        if self._enabled:
            with self._lock:
                self._tool_calls[name] += 1

    def record_resource_read(self, uri: str) -> None:
        if self._enabled:
            with self._lock:
                self._resource_reads[uri] += 1

    def record_prompt_generation(self, name: str) -> None:
        if self._enabled:
            with self._lock:
                self._prompt_generations[name] += 1

    @staticmethod
    def _isoformat(timestamp: Optional[float]) -> str:
        if timestamp is None:
            return ""
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()

    def get_stats(self) -> Dict[str, Any]:
        """Full snapshot of every counter."""
        with self._lock:
            total = self._total_requests
            most_used = self._tool_calls.most_common(1)
            return {
                "enabled": self._enabled,
                "startedAt": self._isoformat(self._started_at),
                "lastRequestAt": self._isoformat(self._last_request_at),
                "requests": {
                    "total": total,
                    "successful": total - self._failed_requests,
                    "failed": self._failed_requests,
                    "byMethod": dict(self._by_method),
                    "totalResponseTimeMs": round(self._total_latency_ms, 3),
                    "avgResponseTimeMs": round(self._total_latency_ms / total, 3) if total else 0.0,
                    "maxResponseTimeMs": round(self._max_latency_ms, 3),
                },
                "tools": {
                    "totalInvocations": sum(self._tool_calls.values()),
                    "byName": dict(self._tool_calls),
                    "mostUsed": most_used[0][0] if most_used else None,
                },
                "resources": {
                    "totalReads": sum(self._resource_reads.values()),
                    "byUri": dict(self._resource_reads),
                },
                "prompts": {
                    "totalGenerations": sum(self._prompt_generations.values()),
                    "byName": dict(self._prompt_generations),
                },
                "errors": {
                    "total": sum(self._errors_by_code.values()),
                    "byCode": dict(self._errors_by_code),
                },
            }

    def get_summary(self) -> Dict[str, Any]:
        """Condensed view for dashboards and health checks."""
        stats = self.get_stats()
        requests = stats["requests"]
        total = requests["total"]
        return {
            "uptime": round(time.time() - self._started_at, 3),
            "totalRequests": total,
            "successRate": round(requests["successful"] / total * 100, 2) if total else 100.0,
            "avgResponseTime": requests["avgResponseTimeMs"],
            "maxResponseTime": requests["maxResponseTimeMs"],
            "totalToolInvocations": stats["tools"]["totalInvocations"],
            "totalResourceReads": stats["resources"]["totalReads"],
            "totalPromptGenerations": stats["prompts"]["totalGenerations"],
            "totalErrors": stats["errors"]["total"],
            "mostUsedTool": stats["tools"]["mostUsed"],
            "lastRequestAt": stats["lastRequestAt"],
        }
