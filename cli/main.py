from __future__ import annotations

import asyncio
import getpass
import os
from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from cli.utils import format_units, impact_label, input_float, input_yes, prompt
from connectors.gateway import ChainGateway
from core.config import DEFAULT_SLIPPAGE_PERCENT, NetworkConfig, load_network
from core.token_registry import TokenRegistry, verify_token_addresses
from core.tokens import Token, short_address
from core.units import from_base_units, slippage_percent_to_bps
from routing.estimator import ConservativeEstimator
from routing.executor import SwapExecutor, SwapIntent
from routing.mev import optimal_slippage
from routing.multi_swap import MultiSwapExecutor, SwapInput
from routing.quote_engine import QuoteEngine
from routing.results import Degraded, Found, Quote


PRIVATE_KEY_ENV = "DEX_PRIVATE_KEY"


def choose_network() -> NetworkConfig:
    sel = prompt("Network (1 mainnet / 2 testnet) [1]: ").strip() or "1"
    return load_network(testnet=(sel == "2"))


def load_account() -> Optional[LocalAccount]:
    key = os.environ.get(PRIVATE_KEY_ENV) or getpass.getpass("Private key (with or without 0x): ").strip()
    if not key:
        print("Private key is required.")
        return None
    try:
        return Account.from_key(key)
    except ValueError as e:
        print(f"Invalid private key: {e}")
        return None


def select_token(registry: TokenRegistry, label: str) -> Optional[Token]:
    print(f"Known tokens: {', '.join(registry.list_symbols())}")
    value = prompt(f"{label} token (symbol or 0x address): ").strip()
    if not value:
        print("Token is required.")
        return None
    try:
        return registry.resolve(value)
    except KeyError as e:
        print(f"Unknown token: {e}")
        return None


def ask_swap_params(registry: TokenRegistry):
    from_token = select_token(registry, "From")
    if from_token is None:
        return None
    to_token = select_token(registry, "To")
    if to_token is None:
        return None
    amount = prompt(f"Amount of {from_token.symbol}: ").strip()
    if not amount:
        print("Amount is required.")
        return None
    try:
        suggested = optimal_slippage(from_token, amount, DEFAULT_SLIPPAGE_PERCENT)
    except ValueError:
        suggested = DEFAULT_SLIPPAGE_PERCENT
    slippage = input_float(f"Slippage % [{suggested}]: ", default=suggested)
    if slippage is None:
        return None
    return from_token, to_token, amount, slippage


def print_quote(quote: Quote, to_token: Token, network: NetworkConfig) -> None:
    out = from_base_units(quote.output_amount, quote.to_decimals)
    min_out = from_base_units(quote.min_amount_out, quote.to_decimals)
    router_name = next((r.name for r in network.routers if r.address.lower() == quote.router_address.lower()), short_address(quote.router_address))
    print(f"Output:        {format_units(out)} {to_token.symbol}")
    print(f"Minimum out:   {format_units(min_out)} {to_token.symbol}")
    print(f"Price:         {quote.execution_price:.8g}")
    print(f"Price impact:  {quote.price_impact_percent:.2f}% ({impact_label(quote.price_impact_percent)})")
    print(f"Route:         {quote.route_label or quote.route_description} [{quote.route_description}]")
    print(f"Router:        {router_name}")


def menu_quote(engine: QuoteEngine, registry: TokenRegistry, compare: bool = False) -> None:
    params = ask_swap_params(registry)
    if params is None:
        return
    from_token, to_token, amount, slippage = params
    if compare:
        res = asyncio.run(engine.compare_routers(from_token, to_token, amount, slippage))
    else:
        res = asyncio.run(engine.get_swap_quote(from_token, to_token, amount, slippage))
    if not isinstance(res, Found):
        print(f"No quote: {res.reason}")
        return
    print_quote(res.value, to_token, engine.network)


def menu_estimate(engine: QuoteEngine, registry: TokenRegistry) -> None:
    from_token = select_token(registry, "From")
    to_token = select_token(registry, "To") if from_token else None
    if from_token is None or to_token is None:
        return
    amount = prompt(f"Amount of {from_token.symbol}: ").strip()
    quote = asyncio.run(engine.get_swap_quote(from_token, to_token, amount))
    # NotFound still carries the amount scaled with on-chain decimals
    if quote.value.amount_in <= 0:
        print(f"Error: {quote.reason}")
        return
    path = quote.value.path if isinstance(quote, Found) else (from_token.address, to_token.address)
    estimator = ConservativeEstimator(engine.network)
    res = asyncio.run(estimator.estimate(path, quote.value.amount_in))
    est = res.value
    out = from_base_units(est.output_amount, quote.value.to_decimals)
    suffix = " (fallback, no router answered)" if isinstance(res, Degraded) else ""
    print(f"Conservative output: {format_units(out)} {to_token.symbol} x{est.safety_factor}{suffix}")
    print(f"Router: {short_address(est.router_address)}")


def make_confirm(network: NetworkConfig):
    def confirm(action: str, tx: Dict[str, Any]) -> bool:
        value = int(tx.get("value") or 0)
        extra = f", value {format_units(from_base_units(value, 18))} {network.native_symbol}" if value else ""
        return input_yes(f"Sign {action} transaction (gas {tx.get('gas')}{extra})? (yes/no): ")

    return confirm


def menu_swap(engine: QuoteEngine, registry: TokenRegistry) -> None:
    params = ask_swap_params(registry)
    if params is None:
        return
    from_token, to_token, amount, slippage = params
    account = load_account()
    if account is None:
        return
    res = asyncio.run(engine.get_swap_quote(from_token, to_token, amount, slippage))
    if not isinstance(res, Found):
        print(f"No quote: {res.reason}")
        return
    print_quote(res.value, to_token, engine.network)

    intent = SwapIntent(
        from_token=from_token,
        to_token=to_token,
        amount_in=amount,
        slippage_bps=slippage_percent_to_bps(slippage),
        user_address=account.address,
    )
    executor = SwapExecutor(engine.network, account, confirm=make_confirm(engine.network))
    result = asyncio.run(executor.execute(intent, res.value))
    if result.success:
        print(f"Swap confirmed: {engine.network.tx_explorer_url(result.transaction_hash)}")
    else:
        print(f"Swap failed ({result.reason.value}): {result.error}")
        if result.transaction_hash:
            print(f"Transaction: {engine.network.tx_explorer_url(result.transaction_hash)}")


def menu_multi_swap(engine: QuoteEngine, registry: TokenRegistry) -> None:
    to_token = select_token(registry, "To")
    if to_token is None:
        return
    inputs: List[SwapInput] = []
    print("Add input tokens; leave the token empty to finish.")
    while True:
        value = prompt("Input token (symbol or 0x address): ").strip()
        if not value:
            break
        try:
            token = registry.resolve(value)
        except KeyError as e:
            print(f"Unknown token: {e}")
            continue
        inputs.append(SwapInput(token, prompt(f"Amount of {token.symbol}: ").strip()))
    if not inputs:
        print("No input tokens.")
        return
    slippage = input_float(f"Slippage % [{DEFAULT_SLIPPAGE_PERCENT}]: ", default=DEFAULT_SLIPPAGE_PERCENT)
    if slippage is None:
        return
    account = load_account()
    if account is None:
        return

    executor = MultiSwapExecutor(engine.network, account, engine=engine, confirm=make_confirm(engine.network))
    result = asyncio.run(executor.execute(inputs, to_token, slippage_percent_to_bps(slippage), account.address))
    for tx in result.queue.transactions:
        symbol = getattr(tx.token, "symbol", tx.token)
        print(f"- {tx.kind.value} {symbol}: {tx.status.value}" + (f" {tx.hash}" if tx.hash else ""))
    if result.success:
        print(f"Multi-swap complete: {len(result.transaction_hashes)} swaps confirmed.")
    else:
        print(f"Multi-swap stopped ({result.reason.value}): {result.error}")


def menu_verify_tokens(network: NetworkConfig, registry: TokenRegistry) -> None:
    print(f"\nChecking {len(registry.addresses())} token addresses on {network.name}...")
    verified = asyncio.run(verify_token_addresses(ChainGateway(network), registry.addresses()))
    for symbol, address in registry.addresses().items():
        found = verified.get(symbol)
        if found is None:
            print(f"- {symbol}: not found")
        elif found.lower() != address.lower():
            print(f"- {symbol}: moved to {found}")
        else:
            print(f"- {symbol}: ok")


def main() -> None:
    print("PulseChain DEX Router - CLI")
    network = choose_network()
    registry = TokenRegistry(network.name)
    engine = QuoteEngine(network, registry=registry)
    print(f"Using {network.name} (chain {network.chain_id}) via {network.rpc_url}")
    while True:
        print("\nMain Menu:")
        print("  1) Quote")
        print("  2) Compare routers")
        print("  3) Conservative estimate")
        print("  4) Swap")
        print("  5) Multi-asset swap")
        print("  6) Verify token addresses")
        print("  0) Exit")
        choice = prompt("Select: ")
        if choice == "1":
            menu_quote(engine, registry)
        elif choice == "2":
            menu_quote(engine, registry, compare=True)
        elif choice == "3":
            menu_estimate(engine, registry)
        elif choice == "4":
            menu_swap(engine, registry)
        elif choice == "5":
            menu_multi_swap(engine, registry)
        elif choice == "6":
            menu_verify_tokens(network, registry)
        elif choice == "0":
            print("Goodbye.")
            break
        else:
            print("Invalid selection.")


if __name__ == "__main__":
    main()
