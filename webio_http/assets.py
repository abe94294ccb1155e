"""Registry mapping content-addressed request paths to files on disk.

Tokens have the form ``/assetserver/<sha1 of absolute path>-<basename>`` so the
same file always maps to the same URL. Registration and lookup may happen
concurrently from the render path and the HTTP handler.
"""

from __future__ import annotations

import hashlib
import os
import threading
from pathlib import Path
from typing import Union

from typing_extensions import TypeAlias

from webio_http.logging import LoggerFactory


ASSET_PREFIX = "/assetserver/"
STATIC_DIR = Path(__file__).resolve().parent / "static"

PathLike: TypeAlias = Union[str, "os.PathLike[str]"]


def asset_token(path: PathLike) -> str:
    """Return the request path used to serve ``path``."""
    resolved = os.path.normpath(os.path.abspath(os.fspath(path)))
    digest = hashlib.sha1(resolved.encode("utf-8")).hexdigest()
    return f"{ASSET_PREFIX}{digest}-{os.path.basename(resolved)}"


class AssetRegistry:
    """Thread-safe mapping from request path to absolute file path."""

    def __init__(self) -> None:
        self._entries: dict[str, Path] = {}
        self._lock = threading.Lock()

    def register(self, path: PathLike) -> str:
        """Register a local file and return its request path.

        The file does not need to exist yet; lookups check for it at request
        time.
        """
        token = asset_token(path)
        self.add(token, path)
        return token

    def add(self, token: str, path: PathLike) -> None:
        """Map an explicit request path to a file."""
        resolved = Path(os.path.normpath(os.path.abspath(os.fspath(path))))
        with self._lock:
            previous = self._entries.get(token)
            self._entries[token] = resolved
        if previous != resolved:
            LoggerFactory.for_assets().debug(f"Registered asset {token} -> {resolved}")

    def resolve(self, token: str) -> Path | None:
        with self._lock:
            return self._entries.get(token)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_registry = AssetRegistry()


def default_asset_registry() -> AssetRegistry:
    return _default_registry
