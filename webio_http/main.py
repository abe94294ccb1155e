import argparse
import threading
from dataclasses import dataclass
from typing import Any, Dict

from webio_http.config import ServerConfig, global_server_config, parse_port
from webio_http.connection import WSConnection
from webio_http.dispatch import Dispatcher
from webio_http.display import page_handler_for
from webio_http.exceptions import ConfigurationError, ServerStartError
from webio_http.logging import LoggerFactory, setup_logging
from webio_http.registry import ServerRegistry


@dataclass
class DemoNode:
    """A button whose clicks are echoed back as a counter update."""

    clicks: int = 0

    def render(self) -> Dict[str, Any]:
        return {
            "type": "node",
            "tag": "button",
            "props": {"id": "demo-button"},
            "children": [f"clicked {self.clicks} times"],
        }


def build_demo_dispatcher(node: DemoNode) -> Dispatcher:
    dispatcher = Dispatcher()
    lock = threading.Lock()

    @dispatcher.on("event")
    def on_event(connection: WSConnection, message: Dict[str, Any]) -> None:
        with lock:
            node.clicks += 1
            clicks = node.clicks
        connection.send(
            {"type": "command", "command": "update", "value": node.render(), "clicks": clicks}
        )

    return dispatcher


def resolve_config(args: argparse.Namespace) -> ServerConfig:
    base = global_server_config()
    host = args.host or base.host
    port = parse_port(args.port, "--port") if args.port is not None else base.http_port
    if host == base.host and port == base.http_port:
        return base
    return ServerConfig(
        host=host,
        http_port=port,
        websocket_route=base.websocket_route,
        base_url=base.base_url,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="WebIO HTTP + WebSocket server")
    parser.add_argument("--host", help="Bind address (default: WEBIO_SERVER_HOST_URL or 127.0.0.1)")
    parser.add_argument("--port", help="HTTP port (default: WEBIO_HTTP_PORT or 8081)")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every WebSocket frame")
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()

    try:
        config = resolve_config(args)
    except ConfigurationError as error:
        log.error(str(error))
        return 2

    node = DemoNode()
    registry = ServerRegistry(config, dispatch=build_demo_dispatcher(node))
    registry.routing_callback = page_handler_for(lambda: node, registry=registry)
    try:
        process = registry.get_or_start()
    except ServerStartError as error:
        log.error(str(error))
        return 1

    log.info(f"Serving demo application at {process.url}/")
    try:
        process.thread.join()
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
    finally:
        registry.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
