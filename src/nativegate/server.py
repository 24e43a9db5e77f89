"""HTTP and WebSocket front end (aiohttp-based, runs as an anyio task)."""

from __future__ import annotations

import json
import math
from pathlib import Path

import anyio
from aiohttp import WSMsgType, web

from .connections import Connection
from .errors import CommandBlocked
from .events import (
    ConnectionReady,
    OutboundEvent,
    SignalDecodeError,
    decode_signal,
    encode_event,
)
from .gateway import Gateway
from .logging import get_logger
from .rate_limit import TokenBucketLimiter
from .settings import GatewaySettings

logger = get_logger(__name__)

CONNECTION_HEADER = "X-Connection-Id"

WS_HEARTBEAT_S = 30.0


def build_gateway_app(settings: GatewaySettings, gateway: Gateway) -> web.Application:
    """Build the aiohttp application for the gateway."""
    rate_limiter = TokenBucketLimiter(
        rate=settings.server.exec_rate_limit,
        window=60.0,
    )
    max_body = settings.server.max_body_bytes

    async def handle_health(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "connections": len(gateway.connections),
                "sessions": len(gateway.registry),
            }
        )

    async def handle_exec(request: web.Request) -> web.Response:
        try:
            return await _process_exec(request)
        except Exception:
            logger.exception("exec.internal_error")
            return web.json_response({"error": "internal error"}, status=500)

    async def _process_exec(request: web.Request) -> web.Response:
        connection_id = request.headers.get(CONNECTION_HEADER, "")
        connection = await gateway.connections.get(connection_id) if connection_id else None
        if connection is None or connection.closed:
            return web.json_response({"error": "No active session"}, status=403)

        if not rate_limiter.allow(connection.id):
            retry_after = math.ceil(rate_limiter.retry_after(connection.id))
            return web.json_response(
                {"error": "rate limited"},
                status=429,
                headers={"Retry-After": str(retry_after)},
            )

        raw_body = await request.read()
        try:
            payload = json.loads(raw_body) if raw_body else {}
        except json.JSONDecodeError:
            return web.json_response({"error": "invalid json"}, status=400)
        command = payload.get("command") if isinstance(payload, dict) else None
        if not isinstance(command, str) or not command.strip():
            return web.json_response({"error": "command is required"}, status=400)

        try:
            status = await gateway.exec_command(connection, command)
        except CommandBlocked as exc:
            return web.json_response({"error": str(exc)}, status=403)
        if status == "pending":
            return web.json_response({"pending": True})
        return web.json_response({"success": True})

    async def handle_stream(request: web.Request) -> web.StreamResponse:
        session = await gateway.registry.get(request.match_info["instance_id"])
        if session is None or session.stopping or not session.stream_url:
            return web.Response(status=404, text="No active stream")
        raise web.HTTPFound(session.stream_url)

    async def handle_ws(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT_S)
        await ws.prepare(request)

        async def send(event: OutboundEvent) -> None:
            await ws.send_str(encode_event(event))

        connection = await gateway.open_connection(send)
        try:
            await connection.emit(ConnectionReady(connection_id=connection.id))
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await _dispatch_frame(connection, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "ws.error",
                        connection_id=connection.id,
                        error=str(ws.exception()),
                    )
        finally:
            rate_limiter.forget(connection.id)
            gateway.release_connection(connection)
        return ws

    async def _dispatch_frame(connection: Connection, data: str) -> None:
        try:
            name, payload = decode_signal(data)
        except SignalDecodeError as exc:
            logger.warning(
                "ws.invalid_frame", connection_id=connection.id, error=str(exc)
            )
            return
        try:
            await gateway.handle_signal(connection, name, payload)
        except Exception:
            logger.exception(
                "ws.signal_failed", connection_id=connection.id, signal=name
            )

    app = web.Application(client_max_size=max_body)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/ws", handle_ws)
    app.router.add_post("/api/exec", handle_exec)
    app.router.add_get("/stream/{instance_id}", handle_stream)
    return app


async def run_gateway_server(
    settings: GatewaySettings,
    config_path: Path | None = None,
) -> None:
    """Run the gateway until cancelled.

    Cancellation stops the listener first, then the task group, which
    terminates every supervised process.
    """
    apps_dir = settings.resolved_apps_dir(config_path=config_path)
    async with anyio.create_task_group() as tg:
        gateway = Gateway(settings, task_group=tg, apps_dir=apps_dir)
        app = build_gateway_app(settings, gateway)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            site = web.TCPSite(
                runner,
                settings.server.host,
                settings.server.port,
            )
            await site.start()
            logger.info(
                "gateway.server.started",
                host=settings.server.host,
                port=settings.server.port,
                apps_dir=str(apps_dir),
            )
            await anyio.sleep_forever()
        finally:
            with anyio.CancelScope(shield=True):
                await runner.cleanup()
            tg.cancel_scope.cancel()
