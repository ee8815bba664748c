"""Diagnostics provider tools - runtime information about this process."""

import asyncio
import gc
import json
import logging
import os
import platform
import sys
import threading
import time
from typing import Any

from mcp_bridge.config.loader import get_settings
from mcp_bridge.mcp.registry import ServerRegistry

logger = logging.getLogger(__name__)

_STARTED_AT = time.time()

EMPTY_INPUT_SCHEMA = {
    "type": "object",
    "properties": {},
    "required": [],
    "additionalProperties": False,
}


def _max_rss_bytes() -> int | None:
    if sys.platform == "win32":
        return None
    import resource

    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is in bytes on macOS, kilobytes elsewhere
    return usage if sys.platform == "darwin" else usage * 1024


def memory_info() -> dict[str, Any]:
    return {
        "maxRssBytes": _max_rss_bytes(),
        "allocatedBlocks": sys.getallocatedblocks(),
        "gcCounts": list(gc.get_count()),
        "gcThresholds": list(gc.get_threshold()),
        "gcCollections": [generation["collections"] for generation in gc.get_stats()],
        "trackedObjects": len(gc.get_objects()),
    }


def threads_info() -> dict[str, Any]:
    threads = [
        {
            "name": thread.name,
            "ident": thread.ident,
            "daemon": thread.daemon,
            "alive": thread.is_alive(),
        }
        for thread in threading.enumerate()
    ]
    try:
        task_count = len(asyncio.all_tasks())
    except RuntimeError:
        task_count = 0
    return {
        "threadCount": len(threads),
        "activeTasks": task_count,
        "threads": threads,
    }


def system_info() -> dict[str, Any]:
    settings = get_settings()
    return {
        "server": {"name": settings.server_name, "version": settings.server_version},
        "python": {
            "version": platform.python_version(),
            "implementation": platform.python_implementation(),
            "executable": sys.executable,
        },
        "os": {
            "system": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "cpuCount": os.cpu_count(),
        "pid": os.getpid(),
        "uptimeSeconds": round(time.time() - _STARTED_AT, 3),
    }


async def memory_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handle the diagnostics-memory tool call."""
    return memory_info()


async def threads_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handle the diagnostics-threads tool call."""
    return threads_info()


async def system_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handle the diagnostics-system tool call."""
    return system_info()


async def read_system_resource() -> str:
    return json.dumps(system_info(), indent=2)


def register(registry: ServerRegistry) -> None:
    """Register all diagnostics tools and resources."""

    # Tool: diagnostics-memory
    registry.tools.register(
        name="diagnostics-memory",
        description="Report memory usage and garbage collector statistics for the server process.",
        input_schema=EMPTY_INPUT_SCHEMA,
        handler=memory_handler,
    )

    # Tool: diagnostics-threads
    registry.tools.register(
        name="diagnostics-threads",
        description="List the live threads and the number of running asyncio tasks.",
        input_schema=EMPTY_INPUT_SCHEMA,
        handler=threads_handler,
    )

    # Tool: diagnostics-system
    registry.tools.register(
        name="diagnostics-system",
        description="Describe the platform, interpreter and uptime of the server process.",
        input_schema=EMPTY_INPUT_SCHEMA,
        handler=system_handler,
    )

    registry.resources.register(
        uri="diagnostics://system",
        name="System information",
        reader=read_system_resource,
        description="Platform and interpreter properties as JSON",
        mime_type="application/json",
    )
