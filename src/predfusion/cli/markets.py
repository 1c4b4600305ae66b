"""Markets subcommand: one-shot scan and arbitrage report."""

from __future__ import annotations

import asyncio

import typer

from predfusion.aggregation import Orchestrator, Snapshot, arbitrage_stats
from predfusion.aggregation.arbitrage import BASE_WARNINGS
from predfusion.errors import ConfigurationError

app = typer.Typer(help="One-shot aggregation across all enabled platforms")


def _aggregate(ctx: typer.Context) -> tuple[Orchestrator, Snapshot]:
    try:
        orch = Orchestrator.from_settings(ctx.obj["settings"])
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)
    snapshot = asyncio.run(orch.refresh())
    if snapshot is None:
        typer.echo("No platform returned data.", err=True)
        raise typer.Exit(code=1)
    return orch, snapshot


def _price(p: float | None) -> str:
    return f"{p:.3f}" if p is not None else "  -  "


@app.command("scan")
def scan(
    ctx: typer.Context,
    category: str | None = typer.Option(None, "--category", "-c", help="Only this category"),
    multi_only: bool = typer.Option(False, "--multi", help="Only markets listed on 2+ platforms"),
    limit: int = typer.Option(50, "--limit", "-n", help="Rows to print (0 = all)"),
) -> None:
    """Fetch every platform once, unify, and print the unified markets."""
    orch, snapshot = _aggregate(ctx)
    rows = snapshot.markets
    if category:
        rows = [m for m in rows if (m.category or "").lower() == category.lower()]
    if multi_only:
        rows = [m for m in rows if len(m.platforms) > 1]
    shown = rows if limit <= 0 else rows[:limit]
    for m in shown:
        platforms = ",".join(sorted(m.platforms))
        yes = m.best_price.yes
        flag = " *" if m.needs_review or m.criteria_mismatch else ""
        typer.echo(
            f"  {m.unified_id}  {m.combined_volume:>12.0f}  yes {_price(yes.price)} @{yes.platform or '-':<10}"
            f"  [{platforms}]{flag}  {m.canonical_question[:60]}"
        )
    typer.echo(f"Total: {len(rows)} unified markets ({sum(len(orch.listings(p)) for p in orch.platforms)} listings)")
    for pid, rec in orch.platform_health().items():
        typer.echo(f"  {pid}: {rec.status.value}" + (f" ({rec.last_error})" if rec.last_error else ""))


@app.command("arbitrage")
def arbitrage(ctx: typer.Context) -> None:
    """Fetch every platform once and print ranked arbitrage opportunities."""
    _, snapshot = _aggregate(ctx)
    by_id = {m.unified_id: m for m in snapshot.markets}
    for opp in snapshot.arbitrage:
        m = by_id.get(opp.unified_id)
        typer.echo(f"{opp.profit_pct:6.2f}%  {m.canonical_question[:70] if m else opp.unified_id}")
        for step in opp.instructions:
            typer.echo(f"    {step.step}. {step.description}")
        # Margin-specific warnings only; the generic ones apply to every row
        for w in opp.warnings[len(BASE_WARNINGS) :]:
            typer.echo(f"    ! {w}")
    stats = arbitrage_stats(snapshot.arbitrage)
    typer.echo(
        f"Opportunities: {stats.count}  avg {stats.avg_profit:.2f}%  max {stats.max_profit:.2f}%  "
        f"min {stats.min_profit:.2f}%"
    )
