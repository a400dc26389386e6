"""Command line interface for inspecting and steering sectionflow instances."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from sectionflow.checkpoint import get_checkpoint_store
from sectionflow.config import load_config
from sectionflow.driver import WorkerPool, build_controller
from sectionflow.errors import SectionflowError
from sectionflow.graph import load_dependency_graph
from sectionflow.models import UserFeedback, WorkflowState
from sectionflow.orchestrator import SuspensionController

app = typer.Typer(help="CLI for sectionflow document workflows")

# Command groups
graph_app = typer.Typer(help="Commands for inspecting the dependency graph")
instance_app = typer.Typer(help="Commands for managing workflow instances")

app.add_typer(graph_app, name="graph")
app.add_typer(instance_app, name="instance")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for sectionflow"),
) -> None:
    """Sectionflow CLI entry point."""
    logging.basicConfig(level=log_level.upper())


def _controller() -> SuspensionController:
    return build_controller(load_config(), store=get_checkpoint_store())


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _print_sections(state: WorkflowState, controller: SuspensionController) -> None:
    for section_id in controller.graph.sort(state.sections):
        record = state.sections[section_id]
        line = f"- {section_id}: {record.status.value}"
        if record.evaluation_result is not None:
            line += f" (score {record.evaluation_result.score:g})"
        if record.last_error:
            line += f" [{record.last_error}]"
        typer.echo(line)


@graph_app.command("check")
def graph_check(path: Optional[Path] = typer.Argument(None)) -> None:
    """
    Validate a dependency map and print it in topological order.

    Example:
        sectionflow graph check ./dependencies.yaml
        # Output: problem_statement
        #         solution <- problem_statement
    """
    try:
        graph = load_dependency_graph(path or load_config().dependency_map_path)
    except SectionflowError as e:
        _fail(str(e))
    for section_id in graph.topological_order():
        deps = graph.sort(graph.direct_dependencies(section_id))
        typer.echo(f"{section_id} <- {', '.join(deps)}" if deps else section_id)


@graph_app.command("dependents")
def graph_dependents(
    section_id: str,
    path: Optional[Path] = typer.Option(None, help="Dependency map to load"),
) -> None:
    """List every section transitively depending on SECTION_ID."""
    try:
        graph = load_dependency_graph(path or load_config().dependency_map_path)
        dependents = graph.sort(graph.transitive_dependents(section_id))
    except SectionflowError as e:
        _fail(str(e))
    if not dependents:
        typer.echo("No dependents")
        return
    for dependent in dependents:
        typer.echo(dependent)


@instance_app.command("create")
def instance_create(instance_id: Optional[str] = typer.Argument(None)) -> None:
    """Create a workflow instance and print its ID."""
    controller = _controller()
    try:
        state = asyncio.run(controller.create_instance(instance_id))
    except SectionflowError as e:
        _fail(str(e))
    typer.echo(f"Created instance {state.instance_id}")


@instance_app.command("list")
def instance_list() -> None:
    """
    List all instances with their current status.

    Example:
        sectionflow instance list
        # Output: abc123    awaiting_feedback
    """
    controller = _controller()

    async def _collect() -> List[WorkflowState]:
        return [await controller.get_state(i) for i in await controller.list_instances()]

    states = asyncio.run(_collect())
    if not states:
        typer.echo("No instances found")
        return
    for state in states:
        typer.echo(f"{state.instance_id}\t{state.status.value}")


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show section statuses, the active interrupt and recorded errors."""
    controller = _controller()
    try:
        state = asyncio.run(controller.get_state(instance_id))
    except SectionflowError:
        _fail("Instance not found")
    typer.echo(f"Instance {state.instance_id}: {state.status.value}")
    _print_sections(state, controller)
    interrupt = state.interrupt_status
    if interrupt.is_interrupted:
        typer.echo(
            f"Interrupted at {interrupt.interruption_point}: "
            f"{interrupt.reason.value if interrupt.reason else 'unknown'}"
        )
    for error in state.errors:
        typer.echo(f"Error: {error}")


@instance_app.command("delete")
def instance_delete(instance_id: str) -> None:
    """Delete an instance; its namespace cannot be reused afterwards."""
    controller = _controller()
    asyncio.run(controller.delete_instance(instance_id))
    typer.echo(f"Deleted instance {instance_id}")


@instance_app.command("interrupt")
def instance_interrupt(instance_id: str) -> None:
    """Show the active interrupt and the content awaiting review."""
    controller = _controller()

    async def _load():
        return (
            await controller.get_interrupt_details(instance_id),
            await controller.get_interrupt_content(instance_id),
        )

    details, record = asyncio.run(_load())
    if details is None:
        typer.echo("No active interrupt")
        return
    typer.echo(f"Section: {details.content_reference}")
    typer.echo(f"Reason: {details.reason.value}")
    typer.echo(f"Point: {details.node_id}")
    if details.evaluation_result is not None:
        result = details.evaluation_result
        typer.echo(f"Evaluation: {'passed' if result.passed else 'failed'} ({result.score:g})")
        if result.feedback:
            typer.echo(f"Evaluator feedback: {result.feedback}")
    if record is not None and record.has_content:
        typer.echo("")
        typer.echo(record.content)


@instance_app.command("feedback")
def instance_feedback(
    instance_id: str,
    feedback_type: str,
    comments: Optional[str] = typer.Option(None, help="Comments passed to the generator"),
) -> None:
    """
    Submit feedback (approve, revise, regenerate or keep) on the active interrupt.

    Example:
        sectionflow instance feedback abc123 regenerate --comments "Shorter please"
    """
    controller = _controller()
    feedback = UserFeedback(type=feedback_type, comments=comments)
    try:
        state = asyncio.run(controller.submit_feedback(instance_id, feedback))
    except SectionflowError as e:
        _fail(str(e))
    typer.echo(f"Feedback applied; instance {instance_id} is {state.status.value}")


@instance_app.command("edit")
def instance_edit(instance_id: str, section_id: str, content: str) -> None:
    """Replace an approved section's content and mark its dependents stale."""
    controller = _controller()
    try:
        asyncio.run(controller.edit_section(instance_id, section_id, content))
        stale = asyncio.run(controller.get_stale_sections(instance_id))
    except SectionflowError as e:
        _fail(str(e))
    typer.echo(f"Edited {section_id}")
    if stale:
        typer.echo(f"Stale: {', '.join(stale)}")


@instance_app.command("stale")
def instance_stale(instance_id: str) -> None:
    """List the stale sections of an instance."""
    controller = _controller()
    try:
        stale = asyncio.run(controller.get_stale_sections(instance_id))
    except SectionflowError as e:
        _fail(str(e))
    if not stale:
        typer.echo("No stale sections")
        return
    for section_id in stale:
        typer.echo(section_id)


@instance_app.command("run")
def instance_run(instance_ids: List[str]) -> None:
    """
    Drive instances until each is interrupted, idle or complete.

    Requires ``generation.generator`` and ``generation.evaluator`` import paths
    in the configuration.
    """
    config = load_config()
    controller = build_controller(config, store=get_checkpoint_store())
    if controller.driver is None:
        _fail("No generator/evaluator configured")
    pool = WorkerPool(controller.driver, size=config.worker_pool_size)
    results = asyncio.run(pool.run(instance_ids))
    failed = False
    for instance_id, result in results.items():
        if isinstance(result, BaseException):
            failed = True
            typer.secho(f"{instance_id}\tfailed: {result}", fg=typer.colors.RED)
        else:
            typer.echo(f"{instance_id}\t{result.status.value}")
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
