"""Command line interface for validating and running flowcast workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import pydantic
import typer
import yaml

from flowcast import Orchestrator, load_config
from flowcast.cli_utils.workflow import WorkflowFile, _format_event, load_workflow_file
from flowcast.errors import WorkflowValidationError
from flowcast.handlers import register_simulated_handlers
from flowcast.models import ProgressEvent
from flowcast.registry import StepHandlerRegistry
from flowcast.validation import GraphValidator, critical_path

app = typer.Typer(help="CLI for flowcast workflows")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for flowcast output"),
) -> None:
    """flowcast CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(path: Path) -> WorkflowFile:
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return load_workflow_file(path)
    except (yaml.YAMLError, pydantic.ValidationError) as exc:
        typer.secho(f"Invalid workflow file {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _validator(config_path: Optional[Path]) -> GraphValidator:
    config = load_config(str(config_path) if config_path else None)
    return GraphValidator(
        complexity_factor=config.validation.complexity_factor,
        detect_cycles=config.validation.detect_cycles,
    )


@app.command("validate")
def validate_command(
    workflow_path: Path,
    config: Optional[Path] = typer.Option(None, help="Path to a flowcast.yaml file"),
) -> None:
    """
    Check a workflow file's dependency graph.

    Reports self-dependencies, references to missing steps, cycles and
    over-coupled graphs, followed by the entanglement score and, for valid
    graphs, the critical path.

    Example:
        flowcast validate ./pipeline.yaml
        # Output: Workflow 'pipeline': 3 steps
        #         Entanglement score: 50
        #         Critical path: fetch -> train -> publish
        #         Valid
    """
    definition = _load(workflow_path)
    validator = _validator(config)
    errors = validator.validate(definition.steps)

    typer.echo(f"Workflow '{definition.name}': {len(definition.steps)} steps")
    for error in errors:
        typer.secho(f"- {error.message}", fg=typer.colors.RED)
    typer.echo(f"Entanglement score: {validator.entanglement_score(definition.steps)}")
    if errors:
        raise typer.Exit(code=1)
    try:
        path = critical_path(definition.steps)
    except WorkflowValidationError:
        typer.echo("Critical path: unavailable (dependency cycle)")
    else:
        typer.echo(f"Critical path: {' -> '.join(path)}")
    typer.echo("Valid")


@app.command("score")
def score_command(workflow_path: Path) -> None:
    """Print the entanglement score of a workflow file."""
    definition = _load(workflow_path)
    typer.echo(str(GraphValidator().entanglement_score(definition.steps)))


@app.command("run")
def run_command(
    workflow_path: Path,
    config: Optional[Path] = typer.Option(None, help="Path to a flowcast.yaml file"),
    order: Optional[str] = typer.Option(
        None, help="Step order: 'declared' or 'topological'"
    ),
    timeout: Optional[float] = typer.Option(None, help="Per-step timeout in seconds"),
) -> None:
    """
    Run a workflow file with the simulated step handlers.

    Every progress event is printed as it is published. Exits with code 1
    when the workflow is rejected or fails.

    Example:
        flowcast run ./pipeline.yaml --order topological
        # Output: [stepStarted] fetch 0%
        #         [stepProgress] fetch 20%
        #         ...
        #         Workflow 1f0c...: completed
    """
    definition = _load(workflow_path)
    settings = load_config(str(config) if config else None)
    if order is not None:
        if order not in ("declared", "topological"):
            typer.secho(f"Unknown step order: {order}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        settings.engine.order = order
    if timeout is not None:
        settings.engine.step_timeout = timeout

    orchestrator = Orchestrator(
        config=settings,
        registry=register_simulated_handlers(StepHandlerRegistry()),
    )
    missing = orchestrator.registry.unregistered(definition.steps)
    if missing:
        typer.secho(f"No handler for step kinds: {', '.join(missing)}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    def echo(event: ProgressEvent) -> None:
        typer.echo(_format_event(event))

    async def _run():
        broadcaster = orchestrator.hub.for_session(definition.session_id)
        broadcaster.subscribe("*", echo)
        await orchestrator.start()
        try:
            workflow = await orchestrator.create(
                definition.name,
                definition.steps,
                session_id=definition.session_id,
                metadata=definition.metadata,
            )
            return await orchestrator.execute(workflow.id)
        finally:
            await orchestrator.stop()

    try:
        result = asyncio.run(_run())
    except WorkflowValidationError as exc:
        for error in exc.errors:
            typer.secho(f"- {error.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {result.workflow_id}: {result.status.value}")
    if not result.succeeded:
        typer.secho(
            f"Step {result.failed_step_id} failed: {result.error}", fg=typer.colors.RED
        )
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
