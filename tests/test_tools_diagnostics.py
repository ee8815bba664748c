"""Tests for diagnostics provider tools."""

import json
import os

import pytest

from mcp_bridge.mcp.registry import ServerRegistry
from mcp_bridge.tools.diagnostics.tools import memory_info, register, system_info, threads_info


@pytest.fixture
def diagnostics():
    registry = ServerRegistry()
    register(registry)
    return registry


def test_memory_info_shape():
    info = memory_info()
    assert info["allocatedBlocks"] > 0
    assert len(info["gcCounts"]) == 3
    assert info["trackedObjects"] > 0


async def test_threads_info_counts_running_tasks():
    info = threads_info()
    assert info["threadCount"] >= 1
    assert info["activeTasks"] >= 1
    assert any(thread["name"] == "MainThread" for thread in info["threads"])


def test_threads_info_outside_event_loop():
    assert threads_info()["activeTasks"] == 0


def test_system_info_reports_server_and_process():
    info = system_info()
    assert info["server"]["name"] == "mcp-bridge"
    assert info["pid"] == os.getpid()
    assert info["uptimeSeconds"] >= 0


async def test_tools_return_structured_content(diagnostics):
    result = await diagnostics.tools.call_tool("diagnostics-system", {})
    assert not result.isError
    assert result.structuredContent["pid"] == os.getpid()
    assert json.loads(result.text()) == result.structuredContent


async def test_tools_reject_arguments(diagnostics):
    result = await diagnostics.tools.call_tool("diagnostics-memory", {"verbose": True})
    assert result.isError


async def test_system_resource_is_json(diagnostics):
    contents = await diagnostics.resources.read("diagnostics://system")
    assert contents.mimeType == "application/json"
    assert json.loads(contents.text)["pid"] == os.getpid()
