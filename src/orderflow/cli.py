"""
Orderflow command line
======================

Operational commands for running the audit outside the API process:

    orderflow db init
    orderflow audit run
    orderflow audit policy
    orderflow orders dwell ORDER_ID
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click

from orderflow.config import settings
from orderflow.core import ApplicationException
from orderflow.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    get_session_maker,
    init_database,
)
from orderflow.lifecycle.infrastructure import SQLAlchemyOrderRepository
from orderflow.sla.application import DwellEvaluationResponse, DwellEvaluator, SweepSummaryResponse
from orderflow.sla.infrastructure import RelayMailTransport, ThresholdPolicyManager
from orderflow.sla.infrastructure.factory import build_audit_components
from orderflow.shared.infrastructure.logging import setup_logging


def _load_policy(policy_path: Optional[str]) -> ThresholdPolicyManager:
    manager = ThresholdPolicyManager()
    manager.load(Path(policy_path) if policy_path else settings.threshold_policy_path)
    return manager


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: Optional[str]):
    """Order lifecycle and SLA audit commands."""
    setup_logging(log_level or settings.log_level, settings.environment, stream=sys.stderr)


# ========== Database ==========

@cli.group()
def db():
    """Database commands."""


@db.command("init")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
def db_init(database_url: Optional[str]):
    """Create all tables."""

    async def run():
        init_database(database_url)
        try:
            await create_tables()
        finally:
            await close_database()

    asyncio.run(run())
    click.echo("Tables created")


# ========== Audit ==========

@cli.group()
def audit():
    """SLA audit commands."""


@audit.command("run")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
@click.option("--policy", "policy_path", default=None, help="Threshold policy YAML file")
@click.option("--quiet", is_flag=True, help="Do not print per-order progress")
def audit_run(database_url: Optional[str], policy_path: Optional[str], quiet: bool):
    """Run one audit sweep and print its summary."""

    def progress(current: int, total: int, message: str) -> None:
        if not quiet:
            click.echo(message, err=True)

    async def run():
        init_database(database_url)
        audit_components = None
        try:
            await create_tables()
            manager = _load_policy(policy_path)
            audit_components = build_audit_components(settings, get_session_maker(), manager)
            return await audit_components.coordinator.run_sweep(on_progress=progress)
        finally:
            if audit_components and isinstance(audit_components.transport, RelayMailTransport):
                await audit_components.transport.close()
            await close_database()

    try:
        summary = asyncio.run(run())
    except ApplicationException as e:
        raise click.ClickException(e.message)

    click.echo(json.dumps(SweepSummaryResponse.from_domain(summary).model_dump(mode="json"), indent=2))
    if summary.errors_handled:
        click.echo(f"{summary.errors_handled} order(s) skipped: {', '.join(summary.faulted_order_ids)}", err=True)


@audit.command("policy")
@click.option("--policy", "policy_path", default=None, help="Threshold policy YAML file")
def audit_policy(policy_path: Optional[str]):
    """Print the effective threshold policy."""
    try:
        manager = _load_policy(policy_path)
    except ApplicationException as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(manager.get_policy().model_dump(mode="json"), indent=2))


# ========== Orders ==========

@cli.group()
def orders():
    """Order commands."""


@orders.command("dwell")
@click.argument("order_id")
@click.option("--database-url", default=None, help="Override DATABASE_URL")
@click.option("--policy", "policy_path", default=None, help="Threshold policy YAML file")
def orders_dwell(order_id: str, database_url: Optional[str], policy_path: Optional[str]):
    """Show how long an order and its components have been in their status."""

    async def run():
        init_database(database_url)
        try:
            async with get_session_context() as session:
                return await SQLAlchemyOrderRepository(session).get(order_id)
        finally:
            await close_database()

    try:
        policy = _load_policy(policy_path).get_policy()
        order = asyncio.run(run())
    except ApplicationException as e:
        raise click.ClickException(e.message)

    if order is None:
        raise click.ClickException(f"Order {order_id} not found")

    evaluator = DwellEvaluator()
    evaluations = [evaluator.evaluate_order(order, policy)] + [
        evaluator.evaluate_component(order, component, policy)
        for _, component in order.iter_components()
    ]
    for evaluation in evaluations:
        row = DwellEvaluationResponse.from_domain(evaluation)
        flag = "OVERDUE" if row.is_violating else ("ok" if row.monitored else "-")
        click.echo(
            f"{row.entity_kind.value:<10} {row.entity_id:<24} {row.status:<24} "
            f"{row.elapsed_hours:>9.1f}h / {row.limit_hours:g}h  {flag}"
        )


if __name__ == "__main__":
    cli()
