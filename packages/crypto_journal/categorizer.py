"""Rule-based transaction categorization.

Pure functions only: no network, no logging side effects. Decision order per
transaction (first match wins):

1. ``to`` is a known protocol contract -> that protocol's category.
2. The input starts with a known method selector -> mapped category.
3. Token transfers are attached -> ``token_transfer``.
4. Native value is positive -> ``native_transfer``.
5. Input data present -> ``contract_interaction``; otherwise ``unknown``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace

from .models import Category, Direction, Transaction

# Keys are lowercased contract addresses.
KNOWN_PROTOCOLS: Mapping[str, Category] = {
    # Staking: ETH2 deposit contract, wstETH, stETH
    "0x00000000219ab540356cbb839cbe05303d7705fa": Category.STAKING,
    "0x7f39c581f595b53c5cb19bd0b3f8da6c935e2ca0": Category.STAKING,
    "0xae7ab96520de3a18e5e111b5eaab095312d7fe84": Category.STAKING,
    # DEX routers: Uniswap V2, Uniswap V3, SushiSwap
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": Category.DEX_TRADE,
    "0xe592427a0aece92de3edee1f18e0157c05861564": Category.DEX_TRADE,
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": Category.DEX_TRADE,
    # Lending: Aave lending pool, Compound markets
    "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9": Category.LENDING,
    "0x3d9819210a31b4961b30ef54be2aed79b9c9cd3b": Category.LENDING,
    "0x5d3a536e4d6dbd6114cc1ead35777bab948e3643": Category.LENDING,
    # NFT marketplaces: OpenSea registry and exchange
    "0x7be8076f4ea4a4ad08075c2508e481d6c946d12b": Category.NFT,
    "0x7f268357a8c2552623316e2562d90e642bb538e5": Category.NFT,
}

METHOD_SELECTORS: Mapping[str, Category] = {
    "0xa9059cbb": Category.TOKEN_TRANSFER,  # transfer(address,uint256)
    "0x23b872dd": Category.TOKEN_TRANSFER,  # transferFrom(address,address,uint256)
    "0x095ea7b3": Category.TOKEN_APPROVAL,  # approve(address,uint256)
    "0x7ff36ab5": Category.DEX_TRADE,  # swapExactETHForTokens
    "0x18cbafe5": Category.DEX_TRADE,  # swapExactTokensForETH
    "0x38ed1739": Category.DEX_TRADE,  # swapExactTokensForTokens
    "0x8803dbee": Category.DEX_TRADE,  # swapTokensForExactTokens
    "0xf305d719": Category.LIQUIDITY_PROVISION,  # addLiquidityETH
    "0xe8e33700": Category.LIQUIDITY_PROVISION,  # addLiquidity
    "0x02751cec": Category.LIQUIDITY_REMOVAL,  # removeLiquidityETH
    "0xbaa2abde": Category.LIQUIDITY_REMOVAL,  # removeLiquidity
    "0xaf2979eb": Category.LIQUIDITY_REMOVAL,  # removeLiquidityETHSupportingFeeOnTransferTokens
}


def categorize(tx: Transaction) -> Category:
    to_addr = (tx.to_address or "").lower()
    protocol = KNOWN_PROTOCOLS.get(to_addr)
    if protocol is not None:
        return protocol

    selector = (tx.method_selector or "").lower()
    by_selector = METHOD_SELECTORS.get(selector[:10]) if selector else None
    if by_selector is not None:
        return by_selector

    if tx.token_transfers:
        return Category.TOKEN_TRANSFER
    if tx.native_value > 0:
        return Category.NATIVE_TRANSFER
    if selector:
        return Category.CONTRACT_INTERACTION
    return Category.UNKNOWN


def derive_direction(tx: Transaction, wallet: str) -> Direction:
    """Direction of ``tx`` relative to ``wallet`` (case-insensitive)."""

    me = wallet.strip().lower()
    sender = (tx.from_address or "").lower()
    receiver = (tx.to_address or "").lower()
    if sender == me and receiver == me:
        return Direction.SELF
    if sender == me:
        return Direction.OUTGOING
    if receiver == me:
        return Direction.INCOMING
    return Direction.INTERNAL


def categorize_transactions(
    transactions: Iterable[Transaction], wallet: str | None = None
) -> list[Transaction]:
    """Return copies of ``transactions`` with category (and direction) set.

    Direction and ``is_user_initiated`` are only derived when ``wallet`` is
    given.
    """

    out: list[Transaction] = []
    for tx in transactions:
        changes: dict[str, object] = {"category": categorize(tx)}
        if wallet:
            changes["direction"] = derive_direction(tx, wallet)
            changes["is_user_initiated"] = (tx.from_address or "").lower() == wallet.lower()
        out.append(replace(tx, **changes))  # type: ignore[arg-type]
    return out


__all__ = [
    "KNOWN_PROTOCOLS",
    "METHOD_SELECTORS",
    "categorize",
    "categorize_transactions",
    "derive_direction",
]
