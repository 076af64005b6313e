"""
Settlement CLI

Command-line interface for settlement administration.

Commands:
- preview-split: Show the commission split for an order file
- reconcile: Compare store balances against the transaction log
- refund-order: Refund a paid order through the provider
- retry-payout: Re-issue a failed payout
- list-presets: Show the automation platform presets
- replay-dlq: Redeliver exhausted automation deliveries
- dlq-info: Show dead letter queue size and oldest entries
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from settlement_engine.calculator import calculate_order_split
from settlement_engine.contracts.records import OrderLine

app = typer.Typer(
    name="settlement-cli",
    help="Marketplace settlement CLI",
)

console = Console()


def get_settings():
    """Get settings."""
    from paycore.settings import get_settings as _get_settings
    return _get_settings()


def get_repository():
    """Get SQL settlement repository."""
    from paycore.db import get_sessionmaker
    from settlement_engine.persistence.repo import SqlSettlementRepository
    return SqlSettlementRepository(get_sessionmaker())


def get_redis():
    """Get Redis client."""
    from paycore.redis import get_redis_client
    return get_redis_client()


def get_dead_letters():
    from settlement_engine.dispatch.dead_letters import DeadLetterQueue
    settings = get_settings()
    return DeadLetterQueue(get_redis(), stream_name=settings.DLQ_STREAM, max_len=settings.DLQ_MAX_LEN)


@app.command()
def preview_split(
    order_file: Path = typer.Argument(..., exists=True, readable=True, help="JSON file with order lines"),
    shipping_fee: Optional[str] = typer.Option(None, help="Shipping fee (default: DEFAULT_SHIPPING_FEE setting)"),
    service_fee: Optional[str] = typer.Option(None, help="Service fee (default: SERVICE_FEE setting)"),
):
    """
    Show the commission split for an order.

    The file holds a list of lines (or {"lines": [...]}) with product_id,
    seller_id, store_id, unit_price, quantity and tier.
    """
    settings = get_settings()
    if shipping_fee is None:
        shipping_fee = settings.DEFAULT_SHIPPING_FEE
    if service_fee is None:
        service_fee = settings.SERVICE_FEE

    try:
        data = json.loads(order_file.read_text())
        raw_lines = data["lines"] if isinstance(data, dict) else data
        lines = [OrderLine.from_dict(line) for line in raw_lines]
        split = calculate_order_split(lines, shipping_fee, service_fee)
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
        rprint(f"[red]Invalid order file: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Per-seller split")
    table.add_column("Seller")
    table.add_column("Store")
    table.add_column("Tier")
    table.add_column("Items", justify="right")
    table.add_column("Subtotal", justify="right")
    table.add_column("Commission", justify="right")
    table.add_column("Seller net", justify="right")

    for seller in split.per_seller_splits:
        table.add_row(
            seller.seller_id,
            seller.store_id,
            seller.tier.value,
            str(seller.item_count),
            f"R{seller.subtotal}",
            f"R{seller.commission}",
            f"R{seller.seller_net}",
        )

    console.print(table)
    rprint(f"  Subtotal:        R{split.subtotal}")
    rprint(f"  Commission:      R{split.total_commission}")
    rprint(f"  Service fee:     R{split.total_service_fee}")
    rprint(f"  Shipping:        R{split.shipping_fee}")
    rprint(f"  [bold]Grand total:     R{split.grand_total}[/bold]")
    rprint(f"  [dim]Est. card fees:  R{split.estimated_provider_fee} (informational)[/dim]")


@app.command()
def reconcile(
    store_ids: list[str] = typer.Argument(..., help="Store IDs to reconcile"),
):
    """
    Recompute store balances from the transaction log and report drift.

    Exits with status 2 if any store is out of balance.
    """
    from settlement_engine.errors import StoreNotFound
    from settlement_engine.ledger.service import SettlementLedger

    ledger = SettlementLedger(get_repository())

    table = Table(title="Store reconciliation")
    table.add_column("Store")
    table.add_column("Earnings (ledger/actual)", justify="right")
    table.add_column("Balance (ledger/actual)", justify="right")
    table.add_column("Transactions", justify="right")
    table.add_column("Status")

    drifted = 0
    for store_id in store_ids:
        try:
            report = ledger.reconcile_store(store_id)
        except StoreNotFound:
            table.add_row(store_id, "-", "-", "-", "[red]not found[/red]")
            drifted += 1
            continue

        if not report.balanced:
            drifted += 1

        table.add_row(
            store_id,
            f"{report.expected_earnings} / {report.actual_earnings}",
            f"{report.expected_balance} / {report.actual_balance}",
            str(report.transaction_count),
            "[green]ok[/green]" if report.balanced else f"[red]drift {report.balance_drift}[/red]",
        )

    console.print(table)

    if drifted:
        raise typer.Exit(2)


@app.command()
def refund_order(
    order_id: str = typer.Argument(..., help="Order ID"),
    reason: str = typer.Option(None, help="Refund reason"),
    force: bool = typer.Option(False, "--force", "-f", help="Don't ask for confirmation"),
):
    """
    Refund a paid order in full.

    The provider refunds the customer, then every seller's sale is reversed.
    """
    from settlement_engine.ledger.service import SettlementLedger
    from settlement_engine.providers.factory import get_provider
    from settlement_engine.service.refunds import refund_order as _refund_order

    if not force:
        if not typer.confirm(f"Refund order {order_id}?"):
            rprint("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    provider = get_provider(get_settings())
    ledger = SettlementLedger(get_repository())

    async def run():
        try:
            return await _refund_order(order_id, ledger, provider, reason=reason)
        finally:
            await provider.close()

    result = asyncio.run(run())

    if not result.succeeded:
        rprint(f"[red]Refund failed ({result.error_code}): {result.error}[/red]")
        raise typer.Exit(1)

    rprint(f"[green]Refund {result.outcome.value}:[/green]")
    for reversal in result.data.get("reversals", []):
        rprint(f"  Store {reversal['store_id']}: -R{reversal['amount']}")


@app.command()
def retry_payout(
    payout_reference: str = typer.Argument(..., help="Reference of the failed payout"),
):
    """
    Re-issue a failed payout to the same store.
    """
    from settlement_engine.errors import SettlementError
    from settlement_engine.providers.base import ProviderError
    from settlement_engine.providers.factory import get_provider
    from settlement_engine.service.payouts import retry_failed_payout

    provider = get_provider(get_settings())
    repo = get_repository()

    async def run():
        try:
            return await retry_failed_payout(payout_reference, repo, provider)
        finally:
            await provider.close()

    try:
        result = asyncio.run(run())
    except (SettlementError, ProviderError) as e:
        rprint(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not result.success:
        rprint(f"[red]Transfer rejected: {result.error_message}[/red]")
        raise typer.Exit(1)

    rprint(f"[green]Transfer initiated:[/green]")
    rprint(f"  Reference: {result.reference}")
    rprint(f"  Transfer code: {result.provider_id}")
    rprint(f"  Status: {result.status}")


@app.command()
def list_presets():
    """
    Show automation platform presets usable in AUTOMATION_SUBSCRIPTIONS.
    """
    from settlement_engine.dispatch.subscriptions import PRESETS

    table = Table(title="Automation presets")
    table.add_column("Preset")
    table.add_column("Events")
    table.add_column("Headers")
    table.add_column("Retries", justify="right")

    for name, preset in PRESETS.items():
        table.add_row(
            name,
            ", ".join(preset["events"]),
            ", ".join(f"{k}: {v}" for k, v in preset["headers"].items()),
            str(preset["max_retries"]),
        )

    console.print(table)


@app.command()
def replay_dlq(
    limit: int = typer.Option(10, help="Maximum entries to replay"),
    force: bool = typer.Option(False, help="Deliver even if the URL is no longer subscribed"),
):
    """
    Replay exhausted deliveries from the dead letter queue.

    Each entry is redelivered to its endpoint with that subscription's current
    headers and retry budget. Delivered entries are removed from the queue.
    """
    from settlement_engine.dispatch.dispatcher import AutomationDispatcher, DeliveryStatus
    from settlement_engine.dispatch.subscriptions import Subscription, SubscriptionRegistry
    from settlement_engine.dispatch.transport import HttpxDeliveryTransport

    settings = get_settings()
    dead_letters = get_dead_letters()

    entries = dead_letters.read(count=limit)
    if not entries:
        rprint("[yellow]No messages in DLQ[/yellow]")
        raise typer.Exit(0)

    rprint(f"[cyan]Found {len(entries)} messages in DLQ[/cyan]")

    registry = SubscriptionRegistry()
    registry.load(settings.AUTOMATION_SUBSCRIPTIONS)
    transport = HttpxDeliveryTransport(timeout=settings.DISPATCH_TIMEOUT_SECONDS)
    # No dead letter sink: failed replays stay where they are
    dispatcher = AutomationDispatcher(
        registry,
        transport,
        base_delay=settings.DISPATCH_BASE_DELAY_SECONDS,
        max_delay=settings.DISPATCH_MAX_DELAY_SECONDS,
    )

    async def run():
        replayed = 0
        try:
            for msg_id, entry in entries:
                event = entry["event"]
                subscription = registry.get(entry["url"])

                if subscription is None:
                    if not force:
                        rprint(f"[yellow]Skipping {msg_id}: {entry['url']} is no longer subscribed[/yellow]")
                        continue
                    subscription = Subscription(url=entry["url"], events=frozenset({event.event_type}))

                outcome = await dispatcher.deliver(subscription, event)
                if outcome.status == DeliveryStatus.DELIVERED:
                    dead_letters.remove(msg_id)
                    replayed += 1
                    rprint(f"[green]Replayed {msg_id} to {entry['url']}[/green]")
                else:
                    rprint(f"[red]Failed to replay {msg_id}: {outcome.error}[/red]")
        finally:
            await transport.close()
        return replayed

    replayed = asyncio.run(run())
    rprint(f"\n[green]Replayed {replayed} messages[/green]")


@app.command()
def dlq_info(
    limit: int = typer.Option(5, help="Entries to show"),
):
    """
    Show dead letter queue size and the oldest entries.
    """
    dead_letters = get_dead_letters()

    rprint(f"[cyan]Stream: {dead_letters.stream_name}[/cyan]")
    rprint(f"  Length: {dead_letters.size()}")

    entries = dead_letters.read(count=limit)
    if not entries:
        return

    table = Table(title="Oldest entries")
    table.add_column("Message ID")
    table.add_column("Event")
    table.add_column("URL")
    table.add_column("Attempts", justify="right")
    table.add_column("Error")

    for msg_id, entry in entries:
        table.add_row(
            msg_id,
            f"{entry['event_type']} ({entry['event_id']})",
            entry["url"],
            str(entry["attempts"]),
            entry.get("error", ""),
        )

    console.print(table)


if __name__ == "__main__":
    app()
