"""
Tests for the capability registry.
"""

import threading

import pytest

from common.config import DuplicatePolicy
from mcpserver.definitions import ToolDefinition
from mcpserver.registry import DuplicateNameError, Registry


def make_tool(name: str, result: str = "ok") -> ToolDefinition:
    return ToolDefinition(name=name, description=name, handler=lambda args: result)


def test_register_and_get():
    registry: Registry[ToolDefinition] = Registry("tool")
    tool = make_tool("echo")

    assert registry.register(tool) is False
    assert registry.get("echo") is tool
    assert registry.has("echo")
    assert "echo" in registry
    assert registry.count() == len(registry) == 1


def test_get_missing_returns_none():
    assert Registry("tool").get("nope") is None


def test_overwrite_policy_last_write_wins():
    registry: Registry[ToolDefinition] = Registry("tool", DuplicatePolicy.OVERWRITE)
    registry.register(make_tool("echo", "first"))

    assert registry.register(make_tool("echo", "second")) is True
    assert registry.count() == 1
    assert registry.get("echo").handler({}) == "second"


def test_reject_policy_raises():
    registry: Registry[ToolDefinition] = Registry("tool", DuplicatePolicy.REJECT)
    original = make_tool("echo", "first")
    registry.register(original)

    with pytest.raises(DuplicateNameError) as exc_info:
        registry.register(make_tool("echo", "second"))

    assert exc_info.value.name == "echo"
    assert registry.get("echo") is original


def test_remove_is_noop_when_absent():
    registry: Registry[ToolDefinition] = Registry("tool")
    registry.register(make_tool("echo"))

    assert registry.remove("echo") is True
    assert registry.remove("echo") is False
    assert registry.get("echo") is None


def test_list_preserves_insertion_order():
    registry: Registry[ToolDefinition] = Registry("tool")
    for name in ("c", "a", "b"):
        registry.register(make_tool(name))

    assert registry.names() == ["c", "a", "b"]
    assert [tool.name for tool in registry.list()] == ["c", "a", "b"]


def test_clear():
    registry: Registry[ToolDefinition] = Registry("tool")
    registry.register(make_tool("a"))
    registry.clear()
    assert registry.count() == 0


def test_list_snapshot_unaffected_by_later_writes():
    registry: Registry[ToolDefinition] = Registry("tool")
    registry.register(make_tool("a"))

    snapshot = registry.list()
    registry.register(make_tool("b"))
    registry.remove("a")

    assert [tool.name for tool in snapshot] == ["a"]


def test_concurrent_registration():
    registry: Registry[ToolDefinition] = Registry("tool")

    def worker(prefix: str) -> None:
        for i in range(200):
            registry.register(make_tool(f"{prefix}-{i}"))

    threads = [threading.Thread(target=worker, args=(f"t{n}",)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert registry.count() == 8 * 200
