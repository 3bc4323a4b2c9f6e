"""Operator CLI for CoachLatam billing using Typer."""

import asyncio
import logging
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from coachlatam.config import get_settings
from coachlatam.constants import DEFAULT_PLANS
from coachlatam.errors import NotFound
from coachlatam.utils import setup_logging

# Load .env from project directory only
_env_path = Path(__file__).parent.parent / ".env"
load_dotenv(_env_path, override=False)

# CLI styles
STYLE_HEADER = "bold blue"
STYLE_SUCCESS = "bold green"
STYLE_WARNING = "bold yellow"
STYLE_ERROR = "bold red"

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="coachlatam",
    help="CoachLatam operator tools - billing plans and PayPal compensation records.",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    setup_logging(get_settings().log_level, verbose=verbose)


async def _seed_plans(paypal_plan_ids: dict[str, str]) -> list[tuple[str, str, bool]]:
    from sqlalchemy import select

    from coachlatam.db.session import async_session_factory, dispose_engines
    from coachlatam.models.plan import SubscriptionPlan

    rows = []
    try:
        async with async_session_factory() as db:
            for plan in DEFAULT_PLANS:
                paypal_plan_id = paypal_plan_ids.get(plan["name"])
                if not paypal_plan_id:
                    continue
                result = await db.execute(
                    select(SubscriptionPlan).where(SubscriptionPlan.paypal_plan_id == paypal_plan_id)
                )
                if result.scalar_one_or_none():
                    rows.append((plan["name"], paypal_plan_id, False))
                    continue
                db.add(
                    SubscriptionPlan(
                        name=plan["name"],
                        price=Decimal(plan["price"]),
                        interval=plan["interval"],
                        paypal_plan_id=paypal_plan_id,
                    )
                )
                rows.append((plan["name"], paypal_plan_id, True))
            await db.commit()
    finally:
        await dispose_engines()
    return rows


async def _list_compensations(include_resolved: bool):
    from coachlatam.db.session import dispose_engines, service_session_factory
    from coachlatam.services.subscription_service import list_compensations

    try:
        async with service_session_factory() as db:
            return await list_compensations(db, include_resolved=include_resolved)
    finally:
        await dispose_engines()


async def _resolve(compensation_id: int):
    from coachlatam.db.session import dispose_engines, service_session_factory
    from coachlatam.services.subscription_service import resolve_compensation

    try:
        async with service_session_factory() as db:
            return await resolve_compensation(db, compensation_id)
    finally:
        await dispose_engines()


@app.command("seed-plans")
def seed_plans(
    starter: Annotated[Optional[str], typer.Option(help="PayPal plan id for the starter tier")] = None,
    professional: Annotated[Optional[str], typer.Option(help="PayPal plan id for the professional tier")] = None,
    master: Annotated[Optional[str], typer.Option(help="PayPal plan id for the master tier")] = None,
    verbose: Annotated[bool, typer.Option(help="Verbose output")] = False,
):
    """
    Insert the subscription plans.

    Plans whose PayPal plan id already exists are left untouched, so the
    command can be re-run safely.
    """
    _configure_logging(verbose)
    paypal_plan_ids = {
        name: value
        for name, value in (("starter", starter), ("professional", professional), ("master", master))
        if value
    }
    if not paypal_plan_ids:
        console.print(f"[{STYLE_ERROR}]Pass at least one --starter/--professional/--master plan id.[/{STYLE_ERROR}]")
        raise typer.Exit(1)

    rows = asyncio.run(_seed_plans(paypal_plan_ids))
    for name, paypal_plan_id, created in rows:
        if created:
            console.print(f"[{STYLE_SUCCESS}]Created {name} plan ({paypal_plan_id})[/{STYLE_SUCCESS}]")
        else:
            console.print(f"[{STYLE_WARNING}]{name} plan already exists ({paypal_plan_id})[/{STYLE_WARNING}]")


@app.command()
def compensations(
    show_all: Annotated[bool, typer.Option("--all", help="Include resolved records")] = False,
    verbose: Annotated[bool, typer.Option(help="Verbose output")] = False,
):
    """
    Show PayPal compensation records.

    Failed records mean PayPal and the database disagree and need manual
    reconciliation in the PayPal dashboard.
    """
    _configure_logging(verbose)
    records = asyncio.run(_list_compensations(show_all))
    if not records:
        console.print(f"[{STYLE_SUCCESS}]No compensation records.[/{STYLE_SUCCESS}]")
        return

    table = Table(title="Billing compensations", header_style=STYLE_HEADER)
    table.add_column("ID", justify="right")
    table.add_column("Created")
    table.add_column("User")
    table.add_column("PayPal subscription")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Error")

    status_styles = {"failed": STYLE_ERROR, "attempted": STYLE_WARNING, "succeeded": STYLE_SUCCESS}
    for record in records:
        style = status_styles.get(record.status)
        status = f"[{style}]{record.status}[/{style}]" if style else record.status
        table.add_row(
            str(record.id),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.user_id,
            record.paypal_subscription_id,
            record.action,
            status,
            (record.error or "")[:60],
        )
    console.print(table)


@app.command()
def resolve(
    compensation_id: Annotated[int, typer.Argument(help="Compensation record id")],
):
    """Mark a compensation record as resolved after manual reconciliation."""
    _configure_logging(False)
    try:
        record = asyncio.run(_resolve(compensation_id))
    except NotFound as e:
        console.print(f"[{STYLE_ERROR}]{e.message}[/{STYLE_ERROR}]")
        raise typer.Exit(1)
    console.print(f"[{STYLE_SUCCESS}]Compensation {record.id} marked resolved.[/{STYLE_SUCCESS}]")


if __name__ == "__main__":
    app()
