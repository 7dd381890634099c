"""CLI entrypoint for brain maintenance."""

from __future__ import annotations

from pathlib import Path

import typer

from ui.cli import commands

app = typer.Typer(help="Self-curating brain maintenance tools")
memory_app = typer.Typer(help="Memory commands")
cortex_app = typer.Typer(help="Cortex commands")
config_app = typer.Typer(help="Configuration commands")


@app.callback()
def main_options(
    root: Path | None = typer.Option(None, "--root", help="Project root holding config/ and the database"),
) -> None:
    """Brain maintenance tooling."""
    commands.set_root(root)


@memory_app.command("store")
def memory_store_cmd(
    memory_type: str = typer.Argument(..., help="fact, pain, win, decision, architecture or reflection"),
    title: str = typer.Argument(..., help="Short title"),
    content: str = typer.Option("", "--content", help="Full description"),
    rule: str = typer.Option("", "--rule", help="Lesson to apply next time"),
    tags: list[str] = typer.Option([], "--tag", help="Topic tag, repeatable"),
    severity: str | None = typer.Option(None, "--severity", help="low, medium or high"),
    skip_gate: bool = typer.Option(False, "--skip-gate", help="Bypass the quality gate"),
) -> None:
    """Store a memory."""
    commands.memory_store(memory_type, title, content, rule, tags, severity, skip_gate)


@memory_app.command("show")
def memory_show_cmd(memory_id: str) -> None:
    """Show one memory as JSON."""
    commands.memory_show(memory_id)


@memory_app.command("list")
def memory_list_cmd(
    memory_type: str | None = typer.Option(None, "--type", help="Only this memory type"),
    tag: list[str] = typer.Option([], "--tag", help="Only memories with this tag"),
    limit: int = typer.Option(20, min=1, max=500),
) -> None:
    """List memories."""
    commands.memory_list(memory_type, tag, limit)


@memory_app.command("review")
def memory_review_cmd() -> None:
    """Show harmful, stale and superseded memories."""
    commands.memory_review()


@memory_app.command("delete")
def memory_delete_cmd(memory_id: str) -> None:
    """Delete a memory and links pointing at it."""
    commands.memory_delete(memory_id)


@app.command("retrieve")
def retrieve_cmd(
    query: str,
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
) -> None:
    """Retrieve memories relevant to a prompt."""
    commands.retrieve(query, as_json)


@app.command("maintain")
def maintain_cmd(
    mode: str = typer.Option("deep", "--mode", help="Consolidation mode: light or deep"),
) -> None:
    """Run memory maintenance."""
    commands.maintain(mode)


@app.command("health")
def health_cmd(as_json: bool = typer.Option(False, "--json")) -> None:
    """Show the brain health report."""
    commands.health(as_json)


@cortex_app.command("candidates")
def cortex_candidates_cmd() -> None:
    """Show learned words and rules ready for promotion."""
    commands.cortex_candidates()


@config_app.command("show")
def config_show_cmd() -> None:
    """Show effective configuration."""
    commands.config_show()


app.add_typer(memory_app, name="memory")
app.add_typer(cortex_app, name="cortex")
app.add_typer(config_app, name="config")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
