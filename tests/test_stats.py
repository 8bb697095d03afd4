"""
Tests for the statistics collector.
"""

import threading

from mcpserver.jsonrpc import INTERNAL_ERROR, METHOD_NOT_FOUND
from mcpserver.stats import StatsCollector


def test_empty_summary():
    summary = StatsCollector().get_summary()

    assert summary["totalRequests"] == 0
    assert summary["successRate"] == 100.0
    assert summary["avgResponseTime"] == 0.0
    assert summary["totalErrors"] == 0
    assert summary["lastRequestAt"] == ""
    assert summary["mostUsedTool"] is None
    assert summary["uptime"] >= 0


def test_records_requests_and_errors():
    stats = StatsCollector()
    stats.record_request("tools/call", 10.0)
    stats.record_request("tools/call", 30.0, INTERNAL_ERROR)
    stats.record_request("nope", 2.0, METHOD_NOT_FOUND)
    stats.record_request(None, 1.0, METHOD_NOT_FOUND)

    full = stats.get_stats()
    assert full["requests"]["total"] == 4
    assert full["requests"]["successful"] == 1
    assert full["requests"]["failed"] == 3
    assert full["requests"]["byMethod"] == {"tools/call": 2, "nope": 1, "<invalid>": 1}
    assert full["requests"]["maxResponseTimeMs"] == 30.0
    assert full["errors"]["byCode"] == {INTERNAL_ERROR: 1, METHOD_NOT_FOUND: 2}

    summary = stats.get_summary()
    assert summary["successRate"] == 25.0
    assert summary["avgResponseTime"] == 10.75
    assert summary["totalErrors"] == 3
    assert summary["lastRequestAt"] != ""


def test_capability_counters():
    stats = StatsCollector()
    stats.record_tool_invocation("echo")
    stats.record_tool_invocation("echo")
    stats.record_tool_invocation("add")
    stats.record_resource_read("config://app")
    stats.record_prompt_generation("greet")

    summary = stats.get_summary()
    assert summary["totalToolInvocations"] == 3
    assert summary["mostUsedTool"] == "echo"
    assert summary["totalResourceReads"] == 1
    assert summary["totalPromptGenerations"] == 1
    assert stats.get_stats()["resources"]["byUri"] == {"config://app": 1}


def test_disable_stops_recording():
    stats = StatsCollector()
    stats.disable()
    stats.record_request("ping", 1.0)
    stats.record_tool_invocation("echo")

    assert not stats.enabled
    assert stats.get_summary()["totalRequests"] == 0

    stats.enable()
    stats.record_request("ping", 1.0)
    assert stats.get_summary()["totalRequests"] == 1


def test_reset():
    stats = StatsCollector()
    stats.record_request("ping", 1.0, INTERNAL_ERROR)
    stats.reset()

    summary = stats.get_summary()
    assert summary["totalRequests"] == 0
    assert summary["totalErrors"] == 0
    assert summary["lastRequestAt"] == ""


def test_concurrent_updates_are_not_lost():
    stats = StatsCollector()

    def worker() -> None:
        for _ in range(1000):
            stats.record_request("tools/call", 1.0)
            stats.record_tool_invocation("echo")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    summary = stats.get_summary()
    assert summary["totalRequests"] == 8000
    assert summary["totalToolInvocations"] == 8000
