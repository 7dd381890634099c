"""Typer command handlers."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer

from core.orchestrator import Orchestrator, RuntimeBundle
from memory.errors import BrainError
from memory.health import format_health_report
from memory.learning.cortex_learner import get_promotion_candidates
from memory.learning.rules import get_rule_promotion_candidates
from memory.scoring import get_review_queue

RUNTIME_OPTIONS: dict[str, Any] = {"root": None}


def _runtime() -> RuntimeBundle:
    return Orchestrator(root=RUNTIME_OPTIONS["root"]).build()


@contextmanager
def _open_runtime() -> Iterator[RuntimeBundle]:
    """Build the runtime and flush pending cortex gaps and change events on exit."""
    bundle = _runtime()
    try:
        yield bundle
    finally:
        bundle.service.close()


def _fail(exc: BrainError) -> None:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1)


def memory_store(
    memory_type: str,
    title: str,
    content: str,
    rule: str,
    tags: list[str],
    severity: str | None,
    skip_gate: bool,
) -> None:
    """Store a memory through the quality gate."""
    candidate = {"type": memory_type, "title": title, "content": content, "rule": rule, "tags": tags}
    if severity:
        candidate["severity"] = severity
    with _open_runtime() as bundle:
        try:
            result = bundle.service.store(candidate, skip_gate=skip_gate)
        except BrainError as exc:
            _fail(exc)
            return
    gate = result.gate_result
    typer.echo(f"{gate.action}: {result.record.id} (quality {gate.quality_score:.2f}) {gate.reason}")
    for warning in result.warnings:
        typer.echo(f"warning: {warning}")
    if result.annotation:
        typer.echo(result.annotation)


def memory_show(memory_id: str) -> None:
    bundle = _runtime()
    try:
        record = bundle.memory.get_memory(memory_id)
    except BrainError as exc:
        _fail(exc)
        return
    typer.echo(json.dumps(record.model_dump(mode="json"), indent=2))


def memory_list(memory_type: str | None, tag: list[str], limit: int) -> None:
    bundle = _runtime()
    records = bundle.memory.list_memories(memory_type=memory_type, tags=tag or None)
    for record in records[-limit:]:
        marker = " (superseded)" if record.superseded_by else ""
        typer.echo(f"{record.id} [{record.type}/{record.severity}] {record.title}{marker}")
    typer.echo(f"{len(records)} memories")


def memory_review() -> None:
    """Show memories that need attention."""
    bundle = _runtime()
    queue = get_review_queue(bundle.memory.list_memories(), config=bundle.settings.scoring)
    if not queue:
        typer.echo("Nothing to review.")
        return
    for item in queue:
        typer.echo(f"{item.memory.id} [{item.health}] {item.memory.title}: {item.reason}")


def memory_delete(memory_id: str) -> None:
    with _open_runtime() as bundle:
        try:
            bundle.service.delete(memory_id)
        except BrainError as exc:
            _fail(exc)
            return
    typer.echo(f"Deleted {memory_id}")


def retrieve(query: str, as_json: bool) -> None:
    """Run retrieval and print the injection text."""
    with _open_runtime() as bundle:
        result = bundle.service.retrieve(query)
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    typer.echo(result.injection_text or "No relevant memories.")
    if result.gaps:
        typer.echo(f"gaps: {', '.join(result.gaps)}")


def maintain(mode: str) -> None:
    """Run a consolidation cycle."""
    with _open_runtime() as bundle:
        if mode == "deep":
            result = bundle.service.run_maintenance()
        else:
            result = bundle.service.consolidator.run(mode)
    typer.echo(json.dumps(_json_safe(result), indent=2))


def health(as_json: bool) -> None:
    bundle = _runtime()
    report = bundle.service.health()
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        typer.echo(format_health_report(report))


def cortex_candidates() -> None:
    """List learned words and rules ready for promotion."""
    bundle = _runtime()
    entries = get_promotion_candidates(bundle.memory.load_cortex_store().entries)
    rules = get_rule_promotion_candidates(bundle.memory.load_rules())
    if not entries and not rules:
        typer.echo("No promotion candidates.")
        return
    for entry in entries:
        typer.echo(
            f"cortex: {entry.word} -> {', '.join(entry.tags)} "
            f"(confidence {entry.confidence:.2f}, {entry.observation_count} observations)"
        )
    for candidate in rules:
        typer.echo(f"rule [{candidate.section}]: {candidate.formatted_rule}")


def config_show() -> None:
    """Show effective runtime config."""
    bundle = _runtime()
    typer.echo(json.dumps(bundle.settings.model_dump(mode="json"), indent=2))


def set_root(root: Path | None) -> None:
    RUNTIME_OPTIONS["root"] = root


def _json_safe(payload: object) -> object:
    """Convert datetimes to strings for JSON output."""
    if isinstance(payload, dict):
        return {k: _json_safe(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [_json_safe(v) for v in payload]
    if hasattr(payload, "isoformat"):
        return payload.isoformat()
    return payload
