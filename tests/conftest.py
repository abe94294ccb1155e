"""
Pytest configuration and shared fixtures for webio-http tests.

This module provides common fixtures and utilities used across all test modules.
"""

import asyncio
import socket
import threading
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest
from loguru import logger

from webio_http import config as config_module
from webio_http import registry as registry_module
from webio_http.assets import AssetRegistry
from webio_http.config import ServerConfig
from webio_http.registry import ServerRegistry


# ==============================================================================
# Dispatch Fixtures
# ==============================================================================


class RecordingDispatch:
    """Thread-safe dispatch bridge that records every call.

    Messages whose ``value`` is in ``fail_on`` raise after being recorded.
    """

    def __init__(self, fail_on: Tuple[Any, ...] = ()) -> None:
        self.calls: List[Tuple[Any, Dict[str, Any]]] = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def __call__(self, connection, message: Dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((connection, message))
        if message.get("value") in self.fail_on:
            raise RuntimeError(f"dispatch failed for {message['value']}")

    @property
    def messages(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [message for _, message in self.calls]

    async def wait_for(self, count: int, timeout: float = 3.0) -> List[Dict[str, Any]]:
        """Poll until ``count`` messages were dispatched."""
        deadline = asyncio.get_running_loop().time() + timeout
        while len(self.messages) < count:
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(
                    f"expected {count} dispatched messages, got {self.messages}"
                )
            await asyncio.sleep(0.01)
        return self.messages


@pytest.fixture
def recording_dispatch() -> RecordingDispatch:
    return RecordingDispatch()


@pytest.fixture
def failing_dispatch() -> RecordingDispatch:
    """Recording dispatch that raises on messages with value 2."""
    return RecordingDispatch(fail_on=(2,))


# ==============================================================================
# Config / Registry Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def reset_global_state():
    """
    Auto-use fixture that resets the memoized config and default registry.

    Both are process-wide; tests must not see each other's values.
    """
    config_module._global_config = None
    registry_module._default_registry = None
    yield
    default = registry_module._default_registry
    if default is not None:
        default.shutdown(timeout=2.0)
    config_module._global_config = None
    registry_module._default_registry = None


@pytest.fixture
def ephemeral_config() -> ServerConfig:
    """Config binding an OS-assigned port on localhost."""
    return ServerConfig(host="127.0.0.1", http_port=0)


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def asset_registry() -> AssetRegistry:
    return AssetRegistry()


@pytest.fixture
def server_registry(ephemeral_config, asset_registry, recording_dispatch):
    """Registry with a recording dispatcher; shut down after the test."""
    registry = ServerRegistry(
        ephemeral_config, assets=asset_registry, dispatch=recording_dispatch
    )
    yield registry
    registry.shutdown(timeout=2.0)


# ==============================================================================
# File System Fixtures
# ==============================================================================


@pytest.fixture
def asset_file(tmp_path) -> Path:
    """
    Fixture providing a small binary asset.

    Returns:
        Path to a file containing bytes [1, 2, 3].
    """
    path = tmp_path / "foo.bin"
    path.write_bytes(bytes([1, 2, 3]))
    return path


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records() -> List[dict]:
    """Capture loguru records emitted during the test (any thread)."""
    records: List[dict] = []
    handler_id = logger.add(
        lambda message: records.append(message.record), level="TRACE", enqueue=False
    )
    yield records
    logger.remove(handler_id)
