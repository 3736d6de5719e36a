from __future__ import annotations

import argparse
import sys
from typing import Any, TextIO

from app.config import apply_env_overrides, load_config
from app.logging_setup import configure_logging
from app.runtime import build_runtime

DEFAULT_CONFIG_PATH = "config.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat commerce assistant")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the webhook HTTP server")
    serve_parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config.yaml or config.json")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    chat_parser = subparsers.add_parser("chat", help="Talk to the bot from the terminal")
    chat_parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config.yaml or config.json")
    chat_parser.add_argument("--customer-id", default="6280000000001")

    sweep_parser = subparsers.add_parser("sweep-sessions", help="Remove sessions idle past the TTL")
    sweep_parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config.yaml or config.json")

    stock_parser = subparsers.add_parser("stock", help="Show stock, or set it with --product and --quantity")
    stock_parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config.yaml or config.json")
    stock_parser.add_argument("--product", default=None)
    stock_parser.add_argument("--quantity", type=int, default=None)

    return parser


def cmd_serve(args: argparse.Namespace, config: dict[str, Any]) -> int:
    import uvicorn

    from app.webhook_app import create_app

    server_conf = config.get("server", {})
    app = create_app(build_runtime(config))
    uvicorn.run(
        app,
        host=args.host or str(server_conf.get("host", "0.0.0.0")),
        port=int(args.port or server_conf.get("port", 8000)),
    )
    return 0


def cmd_chat(
    args: argparse.Namespace,
    config: dict[str, Any],
    stdin: TextIO = sys.stdin,
    stdout: TextIO = sys.stdout,
) -> int:
    runtime = build_runtime(config)
    customer_id = str(args.customer_id)
    print("chat-started (type 'quit' to exit, prefix '!image ' to send a picture)", file=stdout)
    for line in stdin:
        text = line.rstrip("\n")
        if text.strip().lower() in ("quit", "exit"):
            break
        has_media = text.startswith("!image")
        if has_media:
            text = text[len("!image"):].strip()
        response = runtime.router.handle_message(customer_id, text, has_media=has_media)
        print(response.text, file=stdout)
        for attachment in response.attachments:
            print(f"[{attachment.kind}] {attachment.url}", file=stdout)
        for outbound in response.outbound:
            print(f"[to {', '.join(outbound.recipients)}] {outbound.text}", file=stdout)
        print("", file=stdout)
    return 0


def cmd_sweep_sessions(args: argparse.Namespace, config: dict[str, Any]) -> int:
    runtime = build_runtime(config)
    removed = runtime.session_store.sweep_expired()
    print(f"sessions-swept: removed={removed}")
    return 0


def cmd_stock(args: argparse.Namespace, config: dict[str, Any]) -> int:
    runtime = build_runtime(config)
    if args.product is not None or args.quantity is not None:
        if args.product is None or args.quantity is None:
            print("--product and --quantity must be given together")
            return 1
        try:
            product = runtime.catalog.set_stock(args.product, args.quantity)
        except Exception as exc:  # noqa: BLE001
            print(f"stock update failed: {exc}")
            return 1
        print(f"stock-set: {product.id}={product.stock}")
        return 0

    for product in runtime.catalog.list_products():
        print(f"{product.id}\tstock={product.stock}\tcredentials={runtime.credentials.count(product.id)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = apply_env_overrides(load_config(args.config))
    configure_logging(config)

    if args.command == "serve":
        return cmd_serve(args, config)
    if args.command == "chat":
        return cmd_chat(args, config)
    if args.command == "sweep-sessions":
        return cmd_sweep_sessions(args, config)
    if args.command == "stock":
        return cmd_stock(args, config)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
