"""Command line entry points: inspect the companion or run it headless."""

import asyncio
import json
import logging
import time
from typing import Optional

from typer import Option, Typer

from crab_kernel.classifier.rules import dump_rules, load_rules
from crab_kernel.companion.engine import CompanionStateEngine
from crab_kernel.models.config import ClassifierConfig, SessionConfig, TailConfig
from crab_kernel.persistence.store import PersistenceError, StateStore
from crab_kernel.runtime.session import CompanionView, build_session, build_view
from crab_kernel.wellbeing.aggregator import WellbeingAggregator

logger = logging.getLogger(__name__)

cli = Typer(help="Crab Kernel companion tools")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
    )


def _config(db: Optional[str], root: Optional[str], workspace: Optional[str],
            rules: Optional[str]) -> SessionConfig:
    config = SessionConfig()
    if db:
        config.db_path = db
    if root or workspace:
        config.tail = TailConfig(
            root=root or config.tail.root,
            workspace=workspace,
        )
    if rules:
        config.classifier = ClassifierConfig(rules_path=rules)
    return config


def _format_view(view: CompanionView) -> str:
    a = view.attributes
    line = (
        f"{view.label:<12} hunger={a.hunger:>3} happiness={a.happiness:>3} "
        f"energy={a.energy:>3} hygiene={a.hygiene:>3} "
        f"wellbeing={view.wellbeing:>3} ({view.trend.value}) {view.sparkline_day}"
    )
    if view.message:
        line += f"  [{view.message}]"
    return line


@cli.command("status")
def status(
    db: Optional[str] = Option(None, "--db", help="State database path"),
    output_json: bool = Option(False, "--json", help="Output as JSON"),
    verbose: bool = Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Show the persisted companion without writing to the database."""
    _configure_logging(verbose)
    config = _config(db, None, None, None)
    try:
        store = StateStore(db_path=config.db_path)
    except PersistenceError as e:
        print(f"Error: {e}")
        raise SystemExit(1)

    try:
        engine = CompanionStateEngine(store, config=config.engine)
        aggregator = WellbeingAggregator(engine, store, config=config.wellbeing)
        now = time.time()
        view = build_view(engine.snapshot(now), aggregator, now)
    finally:
        store.close()

    if output_json:
        print(json.dumps(view.model_dump(mode="json")))
    else:
        print(_format_view(view))
        print(f"Age: {view.age_seconds / 86400:.1f} days, "
              f"week: {view.sparkline_week}, messes: {view.hygiene_events}")


@cli.command("rules")
def rules(
    path: Optional[str] = Option(None, "--rules", "-r", help="JSON rule table"),
    output_json: bool = Option(False, "--json", help="Output as JSON"),
):
    """List the classification rule table in priority order."""
    table = load_rules(path)
    if output_json:
        print(json.dumps(dump_rules(table)))
        return
    for position, rule in enumerate(table, start=1):
        escalation = ""
        if rule.escalation:
            escalation = f" (x{rule.escalation.threshold} -> {rule.escalation.event.value})"
        print(f"{position:>2}. {rule.id:<16} {rule.cooldown_seconds:>5.1f}s "
              f"{rule.event.value}{escalation}")


@cli.command("watch")
def watch(
    db: Optional[str] = Option(None, "--db", help="State database path"),
    root: Optional[str] = Option(None, "--root", help="Log directory to tail"),
    workspace: Optional[str] = Option(None, "--workspace", "-w", help="Workspace path"),
    rules_path: Optional[str] = Option(None, "--rules", "-r", help="JSON rule table"),
    verbose: bool = Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run a headless session, printing every change."""
    _configure_logging(verbose)
    session = build_session(_config(db, root, workspace, rules_path))
    session.subscribe(lambda view: print(_format_view(view)))
    print(_format_view(session.view()))
    try:
        asyncio.run(session.run_async())
    except KeyboardInterrupt:
        session.dispose()


if __name__ == "__main__":
    cli()
