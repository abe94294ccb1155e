"""Inlineable HTML for a UI node.

Each fragment gets a fresh random 64-bit mount id so several renders of the
same node on one page mount into separate containers.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from typing import IO, Any, Callable


MOUNT_ID_BITS = 64

Renderer = Callable[[Any], Any]


def render_node(node: Any) -> Any:
    """Return the serializable render expression for ``node``."""
    render = getattr(node, "render", None)
    if callable(render):
        return render()
    if node is None or isinstance(node, (str, int, float, bool, list, dict)):
        return node
    raise TypeError(f"Cannot render object of type {type(node).__name__}")


def new_mount_id() -> int:
    return secrets.randbits(MOUNT_ID_BITS)


def js_expression(value: Any) -> str:
    """JSON text that is safe to embed inside a ``<script>`` element."""
    # json.dumps escapes non-ASCII (incl. U+2028/U+2029); "<" only occurs in strings
    return json.dumps(value).replace("<", "\\u003c")


@dataclass(frozen=True)
class MountFragment:
    mount_id: int
    expression: Any

    def to_html(self) -> str:
        return (
            f'<div id="{self.mount_id}"></div>'
            "<script style='display:none'>"
            f"WebIO.mount(document.getElementById('{self.mount_id}'),"
            f"{js_expression(self.expression)})"
            "</script>"
        )


def render_fragment(node: Any, renderer: Renderer = render_node) -> MountFragment:
    return MountFragment(mount_id=new_mount_id(), expression=renderer(node))


def tohtml(out: IO[str], node: Any, renderer: Renderer = render_node) -> MountFragment:
    """Write the inlineable representation of ``node`` to ``out``."""
    fragment = render_fragment(node, renderer)
    out.write(fragment.to_html())
    return fragment
