#!/usr/bin/env python
"""
CLI management commands for the CreatorHub subscription service.
"""

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import click
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorhub.platform.billing.config import BillingConfig, get_billing_config
from creatorhub.platform.billing.exceptions import BillingError
from creatorhub.platform.billing.processors import create_processor_gateway
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.models import BillingInterval
from creatorhub.platform.billing.subscriptions.pricing import SqlCreatorPricing
from creatorhub.platform.billing.subscriptions.reconciliation import ReconciliationService
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore
from creatorhub.platform.db import create_all_tables_async, dispose_engine, get_session_factory
from creatorhub.platform.logging import setup_logging


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], async_sessionmaker[AsyncSession]]
    gateway_factory: Callable[[BillingConfig], ProcessorGateway]
    config_factory: Callable[[], BillingConfig]
    init_db: Callable[[], Coroutine[Any, Any, None]]
    dispose: Callable[[], Coroutine[Any, Any, None]]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        session_factory=get_session_factory,
        gateway_factory=create_processor_gateway,
        config_factory=get_billing_config,
        init_db=create_all_tables_async,
        dispose=dispose_engine,
    )


@dataclass
class _Services:
    store: SubscriptionStore
    pricing: SqlCreatorPricing
    gateway: ProcessorGateway
    intents: SubscriptionIntentService
    reconciliation: ReconciliationService


def _build_services(deps: CLIDependencies) -> _Services:
    config = deps.config_factory()
    session_factory = deps.session_factory()
    store = SubscriptionStore(session_factory)
    pricing = SqlCreatorPricing(session_factory)
    gateway = deps.gateway_factory(config)
    intents = SubscriptionIntentService(store, gateway, pricing, config)
    reconciliation = ReconciliationService(store, gateway, intents, config, pricing=pricing)
    return _Services(store, pricing, gateway, intents, reconciliation)


def _run(deps: CLIDependencies, work: Callable[[_Services], Coroutine[Any, Any, None]]) -> None:
    """Run an async command body and always release the gateway and engine."""

    async def _main() -> None:
        services = _build_services(deps)
        try:
            await work(services)
        except BillingError as e:
            raise click.ClickException(f"{e.error_code}: {e.message}") from e
        finally:
            await services.gateway.close()
            await deps.dispose()

    asyncio.run(_main())


@click.group()
def cli() -> None:
    """CreatorHub subscription service CLI."""
    setup_logging()


@cli.command("init-db")
def init_database() -> None:
    """Create the subscription tables."""
    deps = _get_cli_dependencies()

    async def _init() -> None:
        try:
            await deps.init_db()
        finally:
            await deps.dispose()

    click.echo("Initializing database...")
    asyncio.run(_init())
    click.echo("Database initialized successfully!")


@cli.command("set-price")
@click.argument("creator_id")
@click.argument("amount")
@click.option("--currency", default="USD", show_default=True, help="ISO 4217 currency code")
@click.option(
    "--interval",
    type=click.Choice([i.value for i in BillingInterval]),
    default=BillingInterval.MONTH.value,
    show_default=True,
)
@click.option("--plan-ref", default=None, help="Processor plan id")
@click.option("--inactive", is_flag=True, help="Store the price as inactive")
def set_price(
    creator_id: str,
    amount: str,
    currency: str,
    interval: str,
    plan_ref: str | None,
    inactive: bool,
) -> None:
    """Set the subscription price a creator charges."""
    deps = _get_cli_dependencies()

    async def _set(services: _Services) -> None:
        price = await services.pricing.set_price(
            creator_id,
            amount,
            currency=currency,
            interval=BillingInterval(interval),
            plan_ref=plan_ref,
            is_active=not inactive,
        )
        click.echo(
            f"Price for {price.creator_id}: {price.amount} {price.currency} "
            f"per {price.interval.value}"
        )

    _run(deps, _set)


@cli.command("sweep-intents")
def sweep_intents() -> None:
    """Delete expired subscription intents."""
    deps = _get_cli_dependencies()

    async def _sweep(services: _Services) -> None:
        removed = await services.intents.sweep_expired()
        click.echo(f"Deleted {removed} expired intents")

    _run(deps, _sweep)


@cli.command("resync")
@click.argument("processor_subscription_id")
def resync(processor_subscription_id: str) -> None:
    """Re-read a subscription from the processor and apply its status."""
    deps = _get_cli_dependencies()

    async def _resync(services: _Services) -> None:
        record = await services.reconciliation.sync_from_processor(processor_subscription_id)
        if record is None:
            click.echo(f"No local subscription for {processor_subscription_id}")
            return
        click.echo(f"{record.id}: {record.status.value} (version {record.version})")

    _run(deps, _resync)


@cli.command("list-flags")
def list_flags() -> None:
    """List open manual-reconciliation flags."""
    deps = _get_cli_dependencies()

    async def _list(services: _Services) -> None:
        flags = await services.reconciliation.list_open_flags()
        if not flags:
            click.echo("No open reconciliation flags")
            return
        for flag in flags:
            click.echo(
                f"{flag.flag_id}  {flag.processor_subscription_id}  "
                f"subscriber={flag.subscriber_id} creator={flag.creator_id}  {flag.reason}"
            )

    _run(deps, _list)


@cli.command("resolve-flag")
@click.argument("flag_id")
@click.option("--note", required=True, help="How the flag was resolved")
def resolve_flag(flag_id: str, note: str) -> None:
    """Close a manual-reconciliation flag."""
    deps = _get_cli_dependencies()

    async def _resolve(services: _Services) -> None:
        flag = await services.reconciliation.resolve_flag(flag_id, note)
        click.echo(f"Resolved {flag.flag_id}")

    _run(deps, _resolve)


if __name__ == "__main__":
    cli()
