import asyncio
import json

import aiohttp
import pytest
import pytest_asyncio
import websockets

from common.node_config import LocalNetworkConfig
from common.provider import LocalNetworkProvider
from common.rpc_server import AiohttpJsonRpcServer, JsonRpcServerConfig


@pytest_asyncio.fixture
async def server():
    server = AiohttpJsonRpcServer(
        JsonRpcServerConfig(
            hostname="127.0.0.1", port=0, provider=LocalNetworkProvider(LocalNetworkConfig())
        )
    )
    yield server
    await server.close()


async def post(url, payload):
    async with aiohttp.ClientSession() as session:
        async with session.post(url, data=payload) as response:
            if response.status == 204:
                return None
            return await response.json()


@pytest.mark.asyncio
async def test_listen_reports_bound_port(server):
    port, address = await server.listen()

    assert port != 0
    assert address == "127.0.0.1"


@pytest.mark.asyncio
async def test_http_requests(server):
    port, address = await server.listen()
    url = f"http://{address}:{port}/"

    single = await post(url, json.dumps({"jsonrpc": "2.0", "id": 1, "method": "eth_chainId"}))
    assert single == {"jsonrpc": "2.0", "id": 1, "result": "0x7a69"}

    batch = await post(
        url,
        json.dumps(
            [
                {"jsonrpc": "2.0", "id": 1, "method": "net_version"},
                {"jsonrpc": "2.0", "id": 2, "method": "eth_unknown"},
                {"jsonrpc": "2.0", "method": "eth_chainId"},
            ]
        ),
    )
    assert batch[0]["result"] == "31337"
    assert batch[1]["error"]["code"] == -32601
    assert len(batch) == 2

    assert (await post(url, "{oops"))["error"]["code"] == -32700
    assert (await post(url, json.dumps({"id": 3})))["error"]["code"] == -32600
    assert await post(url, json.dumps({"jsonrpc": "2.0", "method": "eth_chainId"})) is None


@pytest.mark.asyncio
async def test_websocket_requests(server):
    port, address = await server.listen()

    async with websockets.connect(f"ws://{address}:{port}/") as ws:
        await ws.send(json.dumps({"jsonrpc": "2.0", "id": 7, "method": "eth_chainId"}))
        response = json.loads(await asyncio.wait_for(ws.recv(), 5))

    assert response == {"jsonrpc": "2.0", "id": 7, "result": "0x7a69"}


@pytest.mark.asyncio
async def test_close_resolves_wait_until_closed(server):
    await server.listen()
    waiter = asyncio.create_task(server.wait_until_closed())
    await asyncio.sleep(0)
    assert not waiter.done()

    await server.close()
    await asyncio.wait_for(waiter, 1)
    await server.close()


@pytest.mark.parametrize("hostname, port", [("", 8545), ("127.0.0.1", 70000), ("127.0.0.1", -1)])
def test_invalid_server_config(hostname, port):
    with pytest.raises(ValueError):
        JsonRpcServerConfig(
            hostname=hostname, port=port, provider=LocalNetworkProvider(LocalNetworkConfig())
        )


def make_server(port):
    return AiohttpJsonRpcServer(
        JsonRpcServerConfig(
            hostname="127.0.0.1", port=port, provider=LocalNetworkProvider(LocalNetworkConfig())
        )
    )


@pytest.mark.asyncio
async def test_listen_failure_releases_runner(server):
    port, _ = await server.listen()
    clashing = make_server(port)

    with pytest.raises(OSError):
        await clashing.listen()

    assert clashing._runner is None
    await clashing.close()


@pytest.mark.asyncio
async def test_listen_after_close_is_rejected():
    closed = make_server(0)
    await closed.close()

    with pytest.raises(RuntimeError):
        await closed.listen()
