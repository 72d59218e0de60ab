"""CLI entry point for SMS Ledger.

Parses single messages, scans exported SMS backlogs and manages the
categorization database.
"""

import logging
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import typer

from smsledger.categorizer import CategorizationEngine
from smsledger.confidence import classify_confidence_tier
from smsledger.defaults import seed_defaults as seed_categories
from smsledger.inbox import InboxFormatError, load_messages
from smsledger.models import DEFAULT_TRUSTED_BANKS, InboundMessage, PipelineConfig
from smsledger.patterns import PatternRegistry
from smsledger.patterns import seed_defaults as seed_patterns
from smsledger.pipeline import ExtractionPipeline
from smsledger.store import CategorizationStore

DEFAULT_DB = Path("data/categories.db")

app = typer.Typer(add_completion=False, help="Turn bank SMS into categorized transactions.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline details to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _registry() -> PatternRegistry:
    registry = PatternRegistry()
    seed_patterns(registry)
    return registry


def _open_store(db: Path) -> CategorizationStore:
    db.parent.mkdir(parents=True, exist_ok=True)
    store = CategorizationStore(db)
    seed_categories(store)
    return store


@app.command()
def parse(
    sender: str = typer.Argument(..., help="Sender id, e.g. VK-HDFCBK"),
    body: str = typer.Argument(..., help="Message text"),
    trusted: bool = typer.Option(
        True, "--trusted/--untrusted", help="Treat built-in banks as trusted senders"
    ),
    timeout_ms: int = typer.Option(500, "--timeout-ms", help="Time budget for the message"),
) -> None:
    """Extract a transaction from one SMS and show its confidence tier."""
    config = PipelineConfig(
        timeout_ms=timeout_ms, trusted_senders=DEFAULT_TRUSTED_BANKS if trusted else ()
    )
    with ExtractionPipeline(_registry(), config=config) as pipeline:
        result = pipeline.extract(InboundMessage(sender, body, datetime.now()))

    tier = classify_confidence_tier(result.confidence)
    if not result.is_successful:
        typer.echo(f"Failed: {result.reason.value} ({result.confidence:.2f} [{tier.value}])")
        if result.message:
            typer.echo(f"  {result.message}")
        raise typer.Exit(1)

    txn = result.transaction
    typer.echo(f"Bank:       {result.details.pattern.bank_name}")
    typer.echo(f"Amount:     {txn.amount}")
    typer.echo(f"Type:       {txn.direction.value}")
    typer.echo(f"Merchant:   {txn.merchant}")
    typer.echo(f"Date:       {txn.occurred_at.strftime('%Y-%m-%d %H:%M')}")
    if txn.account_identifier:
        typer.echo(f"Account:    {txn.account_identifier}")
    typer.echo(f"Confidence: {result.confidence:.2f} [{tier.value}]")
    if pipeline.needs_review(result):
        typer.echo("Needs review")


@app.command()
def scan(
    csv_path: Path = typer.Argument(..., help="SMS export (CSV)"),
    db: Path = typer.Option(DEFAULT_DB, "--db", help="Categorization database"),
    timeout_ms: int = typer.Option(500, "--timeout-ms", help="Time budget per message"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Extract only, do not categorize"),
) -> None:
    """Extract and categorize every transaction SMS in a backlog."""
    if not csv_path.exists():
        typer.echo(f"Error: File not found: {csv_path}", err=True)
        raise typer.Exit(1)

    try:
        messages = load_messages(csv_path)
    except InboxFormatError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    candidates = [m for m in messages if m.is_potential_transaction()]
    typer.echo(f"Loaded {len(messages)} messages, {len(candidates)} look like transactions")

    store = None if dry_run else _open_store(db)
    try:
        engine = CategorizationEngine(store) if store is not None else None
        with ExtractionPipeline(_registry(), config=PipelineConfig(timeout_ms=timeout_ms)) as pipeline:
            processed = pipeline.process_batch(candidates, engine=engine)
            stats = pipeline.stats

        typer.echo("\n" + "=" * 50)
        typer.echo("EXTRACTION RESULTS")
        typer.echo("=" * 50)
        typer.echo(f"  Extracted: {stats.succeeded}")
        for reason, count in sorted(stats.failed.items(), key=lambda item: item[0].value):
            typer.echo(f"  {reason.value}: {count}")
        typer.echo(f"  Needs review: {stats.needs_review}")

        for item in processed:
            if not item.extraction.is_successful:
                continue
            txn = item.extraction.transaction
            line = f"  {txn.occurred_at.strftime('%Y-%m-%d')} | {txn.amount:>10} | {txn.merchant[:30]}"
            if item.categorization is not None:
                cat = item.categorization
                line += f" -> {cat.category.name} ({cat.reason.value})"
            typer.echo(line)
    finally:
        if store is not None:
            store.close()

    if dry_run:
        typer.echo("\nDry run complete. Run without --dry-run to categorize.")


@app.command()
def patterns() -> None:
    """List registered bank patterns."""
    for pattern in _registry().all_patterns():
        state = "active" if pattern.is_active else "inactive"
        typer.echo(f"{pattern.bank_name:<25} {pattern.sender_pattern:<25} [{state}]")


@app.command()
def categorize(
    merchant: str = typer.Argument(..., help="Merchant name"),
    db: Path = typer.Option(DEFAULT_DB, "--db", help="Categorization database"),
    suggest: bool = typer.Option(False, "--suggest", help="Also list alternative categories"),
) -> None:
    """Show the category a merchant would get."""
    with _open_store(db) as store:
        engine = CategorizationEngine(store)
        result = engine.categorize(SimpleNamespace(merchant=merchant, note=None))
        typer.echo(f"{result.category.name} ({result.confidence:.2f}, {result.reason.value})")

        if suggest:
            for suggestion in engine.suggest_categories(merchant):
                typer.echo(
                    f"  {suggestion.category.name:<20} {suggestion.confidence:.2f} "
                    f"{suggestion.reason.value}"
                )


@app.command()
def learn(
    merchant: str = typer.Argument(..., help="Merchant name"),
    category: str = typer.Argument(..., help="Correct category name"),
    db: Path = typer.Option(DEFAULT_DB, "--db", help="Categorization database"),
) -> None:
    """Teach the categorizer the right category for a merchant."""
    with _open_store(db) as store:
        target = store.get_category_by_name(category)
        if target is None:
            names = ", ".join(c.name for c in store.list_categories())
            typer.echo(f"Error: Unknown category '{category}'. Known: {names}", err=True)
            raise typer.Exit(1)

        try:
            CategorizationEngine(store).learn(SimpleNamespace(merchant=merchant), target)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    typer.echo(f"Learned: {merchant} -> {target.name}")


if __name__ == "__main__":
    app()
