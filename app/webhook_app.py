from __future__ import annotations

import json
import os
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.config import apply_env_overrides, load_config
from app.logging_setup import configure_logging
from app.runtime import Runtime, build_runtime
from chatbot.signature import verify_transport_signature

DEFAULT_CONFIG_PATH = "config.yaml"


def create_app(runtime: Runtime) -> FastAPI:
    config = runtime.config
    server_conf = config.get("server", {})
    signing_secret = str(config.get("transport", {}).get("signing_secret", "") or "").strip()
    chat_path = str(server_conf.get("chat_webhook_path", "/webhook/chat"))
    payment_path = str(server_conf.get("payment_webhook_path", "/webhook/payment"))

    app = FastAPI(title="Shopbot Webhooks", version="0.1.0")
    app.state.runtime = runtime

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        store_ok = await run_in_threadpool(runtime.kv_store.ping)
        return {"ok": True, "store": "ok" if store_ok else "degraded"}

    @app.post(chat_path)
    async def chat_webhook(
        request: Request,
        x_transport_signature: str | None = Header(default=None),
    ) -> JSONResponse:
        body = await request.body()
        if not signing_secret:
            return JSONResponse(status_code=503, content={"ok": False, "error": "transport.signing_secret is not configured"})
        if not verify_transport_signature(signing_secret, body, x_transport_signature):
            return JSONResponse(status_code=401, content={"ok": False, "error": "invalid signature"})
        try:
            payload = json.loads(body.decode("utf-8"))
        except Exception:  # noqa: BLE001
            return JSONResponse(status_code=400, content={"ok": False, "error": "invalid json payload"})
        if not isinstance(payload, dict) or not str(payload.get("customer_id", "") or "").strip():
            return JSONResponse(status_code=400, content={"ok": False, "error": "customer_id is required"})

        response = await run_in_threadpool(
            runtime.router.handle_message,
            str(payload.get("customer_id")),
            str(payload.get("text", "") or ""),
            bool(payload.get("has_media", False)),
        )
        content: dict[str, Any] = {"ok": True, "response": response.to_dict(), "dispatched": False}
        if response.outbound and runtime.transport is not None:
            # The reply goes back in the body; outbound messages are pushed from here.
            content["dispatched"] = True
            content["dispatch_errors"] = await run_in_threadpool(runtime.transport.dispatch, response.outbound)
        return JSONResponse(status_code=200, content=content)

    @app.post(payment_path)
    async def payment_webhook(
        request: Request,
        x_callback_token: str | None = Header(default=None),
    ) -> JSONResponse:
        body = await request.body()
        status_code, payload = await run_in_threadpool(runtime.payment_webhook.handle, body, x_callback_token)
        return JSONResponse(status_code=status_code, content=payload)

    return app


def build_default_app() -> FastAPI:
    config = apply_env_overrides(load_config(os.getenv("SHOPBOT_CONFIG_PATH", DEFAULT_CONFIG_PATH)))
    configure_logging(config)
    return create_app(build_runtime(config))
