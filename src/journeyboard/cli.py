"""CLI commands for driving consulting journeys and their task boards."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .board.reconciler import BoardReconciler, BoardSettings
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    configure_logging,
    copy_config_template,
    load_config,
    write_config,
)
from .dispatch.dispatcher import ActionDispatcher, ExecutionResult
from .errors import JourneyBoardError
from .memory.schema import CardStatus
from .memory.store import MemoryStore
from .workflow.controller import decide
from .workflow.validator import StageValidator

APP_HELP = "Journey board CLI: staged consulting workflow plus plan-driven kanban."

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the journey board configuration file.",
)
SESSION_OPTION = typer.Option(..., "--session", "-s", help="Session identifier.")


def _load(config: str) -> Dict[str, Any]:
    try:
        config_data = load_config(Path(config))
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    configure_logging(config_data)
    return config_data


def _read_json(path: Optional[Path]) -> Any:
    if path is None:
        return None
    if not path.exists():
        raise typer.BadParameter(f"File not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as error:
        raise typer.BadParameter(f"Invalid JSON in {path}: {error}") from error


def _read_context(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    data = _read_json(path)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise typer.BadParameter("Context file must contain a JSON object.")
    return data


def _render_results(results: List[ExecutionResult]) -> None:
    if not results:
        typer.echo("No actions executed.")
        return
    for index, result in enumerate(results, start=1):
        status = "ok" if result.success else "failed"
        resource = f" -> {result.resource_id}" if result.resource_id else ""
        typer.echo(f"{index}. {result.action_type or '<missing>'}: {status}{resource}")
        if result.error:
            typer.echo(f"    ! {result.error}")
        progress = result.data.get("progress") if result.data else None
        if progress:
            typer.echo(f"    +{progress['xp_gained']} XP (level {progress['level']})")


@app.command()
def init(
    config: str = CONFIG_OPTION,
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        help="Directory holding the SQLite database (defaults to ./data).",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file and create the database."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)

    config_data = copy_config_template()
    if data_dir is not None:
        config_data["paths"]["data"] = data_dir.as_posix()
        config_data["paths"]["db_path"] = (data_dir / "journeyboard.sqlite").as_posix()
    write_config(config_path, config_data)
    typer.echo(f"Wrote configuration to {config_path}.")

    with MemoryStore.from_config(config_data) as store:
        typer.echo(f"Database ready at {store.db_path}.")


@app.command(name="next")
def next_actions(
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
    run: bool = typer.Option(False, "--run/--dry-run", help="Execute the decided actions."),
    context_file: Optional[Path] = typer.Option(None, "--context", help="JSON object merged into the context."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User identifier."),
) -> None:
    """Show (or run) the next actions for a session's current stage."""
    config_data = _load(config)
    context = _read_context(context_file)
    with MemoryStore.from_config(config_data) as store:
        if run:
            dispatcher = ActionDispatcher.from_config(store, config_data)
            _render_results(dispatcher.execute_next(session, user, context))
            return

        state = store.get_state(session)
        if state is None:
            typer.echo(f"Session {session} has no stored state; it would start at anamnese.")
            state_input: Any = {"stage": "anamnese", "context": context or {}}
        else:
            state_input = state
        decision = decide(state_input)
        stage = decision.stage.value if decision.stage else "unknown"
        typer.echo(f"Stage: {stage}")
        if decision.missing:
            typer.echo(f"Missing: {', '.join(decision.missing)}")
        if not decision.actions:
            typer.echo("No actions pending.")
        for payload in decision.payloads():
            typer.echo(json.dumps(payload, ensure_ascii=False))


@app.command()
def execute(
    actions_file: Path = typer.Argument(..., help="JSON file with a list of actions (or {'actions': [...]})."),
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
    context_file: Optional[Path] = typer.Option(None, "--context", help="JSON object merged into the context."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User identifier."),
) -> None:
    """Run a batch of actions in order; one failing action never stops the rest."""
    config_data = _load(config)
    payload = _read_json(actions_file)
    if isinstance(payload, dict):
        payload = payload.get("actions") or []
    if not isinstance(payload, list):
        raise typer.BadParameter("Actions file must contain a JSON list of actions.")
    context = _read_context(context_file)

    with MemoryStore.from_config(config_data) as store:
        dispatcher = ActionDispatcher.from_config(store, config_data)
        results = dispatcher.execute(payload, session, user, context)
    _render_results(results)


@app.command()
def reconcile(
    plan_file: Path = typer.Argument(..., help="JSON plan with type, area and cards."),
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Merge a regenerated plan into the session's board."""
    config_data = _load(config)
    plan = _read_json(plan_file)
    if not isinstance(plan, dict):
        raise typer.BadParameter("Plan file must contain a JSON object.")

    with MemoryStore.from_config(config_data) as store:
        reconciler = BoardReconciler(store, settings=BoardSettings.from_config(config_data))
        result = reconciler.reconcile(session, plan)

    typer.echo(
        f"Plan {result.plan_hash} v{result.plan_version}: "
        f"created={result.created} updated={result.updated} "
        f"deprecated={result.deprecated} unchanged={result.unchanged}"
    )
    if result.errors:
        for batch, message in sorted(result.errors.items()):
            typer.echo(f"  ! {batch}: {message}")
        raise typer.Exit(code=1)


@app.command()
def board(
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
    include_deprecated: bool = typer.Option(False, "--all", help="Include deprecated cards."),
) -> None:
    """List the cards on a session's board."""
    config_data = _load(config)
    with MemoryStore.from_config(config_data) as store:
        cards = BoardReconciler(store).list_board(session, include_deprecated=include_deprecated)
    if not cards:
        typer.echo("Board is empty.")
        return
    for card in cards:
        due = card.due_at.date().isoformat() if card.due_at else "-"
        flag = " (deprecated)" if card.deprecated else ""
        typer.echo(f"[{card.status.value}] {card.id} v{card.plan_version} {card.title} @{card.assignee} due {due}{flag}")


@app.command()
def move(
    card_id: str = typer.Argument(..., help="Card identifier."),
    status: CardStatus = typer.Argument(..., help="Target column."),
    config: str = CONFIG_OPTION,
) -> None:
    """Move a card to another column."""
    config_data = _load(config)
    with MemoryStore.from_config(config_data) as store:
        try:
            card = BoardReconciler(store).move_card(card_id, status)
        except JourneyBoardError as error:
            typer.echo(str(error))
            raise typer.Exit(code=1) from error
    typer.echo(f"{card.id} -> {card.status.value}")


@app.command()
def validate(
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Check whether the session may leave its current stage."""
    config_data = _load(config)
    with MemoryStore.from_config(config_data) as store:
        result = StageValidator(store).validate_session(session)
    typer.echo(result.message)
    for entry in result.missing_fields:
        typer.echo(f"  - {entry}")
    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def advance(
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
    to: Optional[str] = typer.Option(None, "--to", help="Target stage (defaults to the next one)."),
    force: bool = typer.Option(False, "--force", help="Skip missing fields (never the validation gate)."),
) -> None:
    """Advance the session to its next stage."""
    config_data = _load(config)
    params: Dict[str, Any] = {"force": force}
    if to:
        params["to"] = to
    with MemoryStore.from_config(config_data) as store:
        dispatcher = ActionDispatcher.from_config(store, config_data)
        results = dispatcher.execute([{"type": "transition_stage", "params": params}], session)
    _render_results(results)
    if not results[0].success:
        raise typer.Exit(code=1)


@app.command()
def confirm(
    session: str = SESSION_OPTION,
    config: str = CONFIG_OPTION,
    kind: Optional[str] = typer.Option(None, "--kind", help="Validation being confirmed."),
) -> None:
    """Confirm a pending validation so the journey may advance."""
    config_data = _load(config)
    params: Dict[str, Any] = {"kind": kind} if kind else {}
    with MemoryStore.from_config(config_data) as store:
        dispatcher = ActionDispatcher.from_config(store, config_data)
        results = dispatcher.execute([{"type": "confirm_validation", "params": params}], session)
    _render_results(results)
    if not results[0].success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
