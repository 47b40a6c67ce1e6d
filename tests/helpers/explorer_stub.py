"""HTTP stubs for the explorer, price API and JSON-RPC collaborators.

Everything goes through ``httpx.MockTransport``: tests describe responses per
``(module, action)`` for the explorer, per CoinGecko id for the price API and
per call for JSON-RPC, and get back an ``httpx.Client`` to inject.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

import httpx

EXPLORER_URL = "https://eth.blockscout.com"
WALLET = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
USDC_CONTRACT = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def regular_row(
    n: int,
    *,
    frm: str = WALLET,
    to: str = OTHER,
    wei: int = 10**18,
    ts: int = 1_704_067_200,  # 2024-01-01T00:00:00Z
    input_data: str = "0x",
    is_error: str = "0",
    gas_used: int = 21_000,
    gas_price: int = 20 * 10**9,
) -> dict[str, Any]:
    return {
        "hash": tx_hash(n),
        "from": frm,
        "to": to,
        "value": str(wei),
        "isError": is_error,
        "gasUsed": str(gas_used),
        "gasPrice": str(gas_price),
        "blockNumber": str(19_000_000 + n),
        "timeStamp": str(ts),
        "input": input_data,
    }


def token_row(
    n: int,
    *,
    frm: str = OTHER,
    to: str = WALLET,
    raw: int = 100 * 10**6,
    symbol: str = "USDC",
    decimals: int = 6,
    ts: int = 1_704_067_200,
) -> dict[str, Any]:
    return {
        "hash": tx_hash(n),
        "from": frm,
        "to": to,
        "value": str(raw),
        "tokenSymbol": symbol,
        "tokenName": symbol,
        "tokenDecimal": str(decimals),
        "contractAddress": USDC_CONTRACT,
        "blockNumber": str(19_000_000 + n),
        "timeStamp": str(ts),
        "gasUsed": "50000",
        "gasPrice": str(20 * 10**9),
        "input": "0xa9059cbb",
    }


def ok(result: Any) -> dict[str, Any]:
    return {"status": "1", "message": "OK", "result": result}


def empty() -> dict[str, Any]:
    return {"status": "0", "message": "No transactions found", "result": []}


type Reply = Mapping[str, Any] | httpx.Response | Exception
type Routes = Mapping[tuple[str, str], Reply | Callable[[httpx.Request], Reply]]


def explorer_client(
    routes: Routes, *, calls: list[httpx.Request] | None = None
) -> httpx.Client:
    """Client answering ``/api?module=..&action=..`` from ``routes``.

    Unrouted actions answer with an empty result set.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        key = (request.url.params.get("module", ""), request.url.params.get("action", ""))
        reply = routes.get(key, empty())
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=dict(reply))

    return httpx.Client(transport=httpx.MockTransport(handler), base_url=EXPLORER_URL)


def price_client(
    usd_by_id: Mapping[str, float] | None = None,
    *,
    status: int = 200,
    rpc: Callable[[dict[str, Any]], dict[str, Any]] | None = None,
    calls: list[httpx.Request] | None = None,
) -> httpx.Client:
    """Client for the CoinGecko-style price API (GET) and JSON-RPC (POST)."""

    prices = dict(usd_by_id or {})

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.method == "POST":
            if rpc is None:
                return httpx.Response(503, text="rpc unavailable")
            return httpx.Response(200, json=rpc(json.loads(request.content)))
        if status != 200:
            return httpx.Response(status, text="error")
        ids = request.url.params.get("ids", "")
        body = {i: {"usd": prices[i]} for i in ids.split(",") if i in prices}
        return httpx.Response(200, json=body)

    return httpx.Client(transport=httpx.MockTransport(handler))
