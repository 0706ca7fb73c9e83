"""HTTP and WebSocket JSON-RPC server bound to a provider."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from aiohttp import WSMsgType, web

from common.provider import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    EthereumProvider,
    ProviderError,
)

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class JsonRpcServerConfig:
    hostname: str
    port: int
    provider: EthereumProvider

    def __post_init__(self) -> None:
        if not isinstance(self.hostname, str) or not self.hostname:
            raise ValueError("Server hostname must be a non-empty string")
        if (
            isinstance(self.port, bool)
            or not isinstance(self.port, int)
            or not 0 <= self.port <= 65535
        ):
            raise ValueError(f"Invalid TCP port: {self.port!r}")


class JsonRpcServer(ABC):
    """Transport exposing a provider over the network."""

    @abstractmethod
    async def listen(self) -> tuple[int, str]:
        """Starts accepting connections, returns the bound (port, address)."""

    @abstractmethod
    async def wait_until_closed(self) -> None:
        """Suspends until the server has been closed."""

    @abstractmethod
    async def close(self) -> None:
        """Stops the server."""


def _error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict:
    error = ProviderError(code, message, data)
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_json()}


class AiohttpJsonRpcServer(JsonRpcServer):
    """JSON-RPC over HTTP POST and WebSocket on the same path."""

    def __init__(self, config: JsonRpcServerConfig) -> None:
        self.config: JsonRpcServerConfig = config
        self.provider: EthereumProvider = config.provider
        self.app: web.Application = self._prepare_app()
        self._runner: Optional[web.AppRunner] = None
        self._closed = asyncio.Event()
        self._websockets: set[web.WebSocketResponse] = set()

    def _prepare_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_get)
        app.router.add_post("/", self._handle_http)
        return app

    async def _handle_call(self, call: Any) -> Optional[dict]:
        if not isinstance(call, dict) or not isinstance(call.get("method"), str):
            request_id = call.get("id") if isinstance(call, dict) else None
            return _error_response(request_id, INVALID_REQUEST, "Invalid request")

        request_id = call.get("id")
        is_notification = "id" not in call
        try:
            result = await self.provider.request(call["method"], call.get("params"))
        except ProviderError as e:
            response = _error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.error(f"Unexpected error handling {call['method']}: {e}", exc_info=True)
            response = _error_response(request_id, INTERNAL_ERROR, str(e))
        else:
            response = {"jsonrpc": "2.0", "id": request_id, "result": result}

        return None if is_notification else response

    async def _handle_payload(self, body: str) -> Optional[Any]:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return _error_response(None, PARSE_ERROR, "Parse error")

        if isinstance(payload, list):
            if not payload:
                return _error_response(None, INVALID_REQUEST, "Empty batch")
            responses = [await self._handle_call(call) for call in payload]
            return [r for r in responses if r is not None] or None

        return await self._handle_call(payload)

    async def _handle_http(self, request: web.Request) -> web.StreamResponse:
        response = await self._handle_payload(await request.text())
        if response is None:
            return web.Response(status=204)
        return web.json_response(response)

    async def _handle_get(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=20)
        if not ws.can_prepare(request).ok:
            return web.Response(status=405, text="Use POST or a WebSocket upgrade")

        await ws.prepare(request)
        self._websockets.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    response = await self._handle_payload(msg.data)
                    if response is not None:
                        await ws.send_json(response)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket closed with error: {ws.exception()}")
        finally:
            self._websockets.discard(ws)
        return ws

    async def listen(self) -> tuple[int, str]:
        if self._closed.is_set():
            raise RuntimeError("JSON-RPC server has already been closed")

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        try:
            site = web.TCPSite(
                self._runner, host=self.config.hostname, port=self.config.port
            )
            await site.start()
        except BaseException:
            await self._runner.cleanup()
            self._runner = None
            raise

        address, port = self._runner.addresses[0][:2]
        logger.debug(f"JSON-RPC server listening on {address}:{port}")
        return port, address

    async def wait_until_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        if self._closed.is_set():
            return

        for ws in list(self._websockets):
            await ws.close()
        if self._runner is not None:
            await self._runner.cleanup()
        self._closed.set()
        logger.debug("JSON-RPC server closed")
