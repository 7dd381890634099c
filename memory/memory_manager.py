"""Memory store coordinator over SQL persistence."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from core.zones import try_zone
from memory.consolidation.forgetting import restore_from_archive
from memory.cortex import build_seed_table, infer_severity, infer_tags
from memory.errors import MemoryNotFoundError, MemoryValidationError
from memory.learning.cortex_learner import merge_cortex
from memory.linker import CandidateLink, add_link_pair, find_links
from memory.provenance import new_record_id
from memory.quality_gate import GateResult, QualityGateOptions, compute_fingerprint, evaluate
from memory.schemas import (
    ArchivedMemoryRow,
    BrainDocumentRow,
    CortexEntryRow,
    LearnedRuleRow,
    MemoryRow,
    as_utc,
    utc_now,
)
from memory.stores.sql_store import SQLStore
from memory.types.archive import ArchivedMemory
from memory.types.brain_state import BrainState
from memory.types.cortex import CortexLearnedStore, LearnedCortexEntry
from memory.types.expectation import ExpectationModel
from memory.types.memory import LinkRelationship, MemoryCandidate, MemoryRecord, normalize_tags
from memory.types.rules import LearnedRule

logger = logging.getLogger("brain.memory")

SUPERSEDE_CONFIDENCE = 0.7
SKIP_GATE_QUALITY = 0.5
UPDATABLE_FIELDS = frozenset({"title", "content", "rule", "tags", "severity"})

BRAIN_STATE_DOC = "brain_state"
EXPECTATION_DOC = "expectation_model"
CORTEX_META_DOC = "cortex_meta"
ARCHIVE_META_DOC = "archive_meta"


@dataclass
class StoreResult:
    """Outcome of one write-path call."""

    record: MemoryRecord
    gate_result: GateResult
    merged: bool = False
    superseded: list[str] = field(default_factory=list)
    links: list[CandidateLink] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return self.gate_result.action != "reject"

    @property
    def annotation(self) -> str:
        return f"degraded: [{', '.join(self.degraded)}]" if self.degraded else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "record": self.record.model_dump(mode="json"),
            "gate": self.gate_result.to_dict(),
            "merged": self.merged,
            "superseded": self.superseded,
            "links": [
                {"target_id": link.target_id, "relationship": link.relationship, "weight": link.weight}
                for link in self.links
            ],
            "warnings": self.warnings,
            "degraded": self.annotation or None,
        }


class MemoryManager:
    """Owns every persisted brain collection for one project."""

    def __init__(
        self,
        sql_store: SQLStore,
        project_id: str = "default",
        gate_options: QualityGateOptions | None = None,
        seed_extra: Mapping[str, list[str]] | None = None,
        cortex_threshold: float = 0.5,
    ) -> None:
        self.sql_store = sql_store
        self.sql_store.create_all()
        self.project_id = project_id
        self.gate_options = gate_options or QualityGateOptions()
        self.seed_table = build_seed_table(seed_extra)
        self.cortex_threshold = cortex_threshold

    # ── write path ───────────────────────────────────────────────

    def store(
        self,
        candidate: MemoryCandidate | Mapping[str, Any],
        skip_gate: bool = False,
        quality_score: float | None = None,
    ) -> StoreResult:
        """Gate, persist and link a candidate.

        Rejected candidates come back with their diagnostics but are never
        written. Link discovery runs as a degradable zone after the record is
        committed.
        """
        candidate = self._validate_candidate(candidate)

        tags = list(candidate.tags)
        if len(tags) < 2:
            inferred = infer_tags(candidate.title, candidate.content, candidate.rule, self.merged_cortex())
            tags = normalize_tags(tags + inferred)
        severity = candidate.severity or infer_severity(candidate.content, candidate.rule)

        draft = MemoryRecord(
            id=new_record_id("mem"),
            project_id=self.project_id,
            type=candidate.type,
            title=candidate.title,
            content=candidate.content,
            rule=candidate.rule,
            tags=tags,
            severity=severity,
            related_task_id=candidate.related_task_id,
            surfaced_memory_ids=list(candidate.surfaced_memory_ids),
            outcome=candidate.outcome,
            created_at=utc_now(),
        )

        existing = self.list_memories()
        if skip_gate:
            gate = GateResult(
                action="accept",
                reason="Gate skipped",
                quality_score=SKIP_GATE_QUALITY if quality_score is None else max(0.0, min(1.0, quality_score)),
                fingerprint=compute_fingerprint(draft.title, draft.content),
            )
        else:
            gate = evaluate(draft, existing, self.gate_options, severity)

        if gate.action == "reject":
            rejected = draft.model_copy(update={"quality_score": gate.quality_score, "fingerprint": gate.fingerprint})
            logger.info("rejected candidate %r: %s", draft.title, gate.reason)
            return StoreResult(record=rejected, gate_result=gate)

        if gate.action == "merge" and gate.merge_target is not None:
            merged = self._apply_merge(gate.merge_target.id, gate, tags)
            logger.info("merged candidate %r into %s", draft.title, merged.id)
            return StoreResult(record=merged, gate_result=gate, merged=True)

        record = draft.model_copy(update={"quality_score": gate.quality_score, "fingerprint": gate.fingerprint})
        superseded: list[str] = []
        with self.sql_store.session() as sess:
            sess.add(self._record_to_row(record))
            for conflict in gate.conflicts:
                if conflict.confidence > SUPERSEDE_CONFIDENCE and conflict.existing.type == record.type:
                    row = self._row(sess, conflict.existing.id)
                    if row is not None:
                        row.superseded_by = record.id
                        superseded.append(row.id)

        outcome = try_zone("linker", lambda: self._link_new_record(record.id), [])
        links: list[CandidateLink] = outcome.value
        warnings = [link.reason for link in links if link.is_warning]
        logger.info(
            "stored %s %s (quality %.2f, %d links, %d superseded)",
            record.type,
            record.id,
            gate.quality_score,
            len(links),
            len(superseded),
        )
        return StoreResult(
            record=self.get_memory(record.id),
            gate_result=gate,
            superseded=superseded,
            links=links,
            warnings=warnings,
            degraded=[outcome.label] if outcome.degraded else [],
        )

    def _validate_candidate(self, candidate: MemoryCandidate | Mapping[str, Any]) -> MemoryCandidate:
        if isinstance(candidate, MemoryCandidate):
            return candidate
        try:
            return MemoryCandidate.model_validate(dict(candidate))
        except ValidationError as exc:
            raise MemoryValidationError(str(exc)) from exc

    def _apply_merge(self, target_id: str, gate: GateResult, tags: list[str]) -> MemoryRecord:
        """Fold the gate's merged fields into an existing record and re-read it."""
        with self.sql_store.session() as sess:
            row = self._require_row(sess, target_id)
            row.title = gate.merged_title or row.title
            row.content = gate.merged_content if gate.merged_content is not None else row.content
            row.rule = gate.merged_rule if gate.merged_rule is not None else row.rule
            row.tags = normalize_tags(list(row.tags or []) + tags)
        return self.get_memory(target_id)

    def _link_new_record(self, memory_id: str) -> list[CandidateLink]:
        with self.sql_store.session() as sess:
            rows = {row.id: row for row in self._project_query(sess).all()}
            records = {row_id: self._row_to_record(row) for row_id, row in rows.items()}
            new = records[memory_id]
            links = find_links(new, (record for record_id, record in records.items() if record_id != memory_id))
            touched: set[str] = set()
            for link in links:
                target = records[link.target_id]
                forward, mirror = add_link_pair(new, target, link.relationship)
                if forward:
                    touched.add(new.id)
                if mirror:
                    touched.add(target.id)
            for record_id in touched:
                rows[record_id].links = self._dump_links(records[record_id])
        return links

    # ── reads ────────────────────────────────────────────────────

    def find_memory(self, memory_id: str) -> MemoryRecord | None:
        with self.sql_store.session() as sess:
            row = self._row(sess, memory_id)
            return self._row_to_record(row) if row is not None else None

    def get_memory(self, memory_id: str) -> MemoryRecord:
        """Fetch one live memory or raise MemoryNotFoundError."""
        record = self.find_memory(memory_id)
        if record is None:
            raise MemoryNotFoundError("memory", memory_id)
        return record

    def list_memories(
        self,
        memory_type: str | None = None,
        tags: Iterable[str] | None = None,
        include_superseded: bool = True,
    ) -> list[MemoryRecord]:
        """Live memories for this project, oldest first."""
        wanted = set(tags or [])
        with self.sql_store.session() as sess:
            query = self._project_query(sess)
            if memory_type is not None:
                query = query.filter(MemoryRow.type == memory_type)
            if not include_superseded:
                query = query.filter(MemoryRow.superseded_by.is_(None))
            rows = query.order_by(MemoryRow.created_at.asc()).all()
            records = [self._row_to_record(row) for row in rows]
        if wanted:
            records = [record for record in records if wanted & set(record.tags)]
        return records

    def count_memories(self) -> int:
        with self.sql_store.session() as sess:
            return self._project_query(sess).count()

    def tag_counts(self) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for record in self.list_memories():
            counts.update(record.tags)
        return dict(counts.most_common())

    def type_counts(self) -> dict[str, int]:
        return dict(Counter(record.type for record in self.list_memories()))

    # ── mutations ────────────────────────────────────────────────

    def update_memory(self, memory_id: str, **updates: Any) -> MemoryRecord:
        """Edit text fields, tags or severity of a live memory."""
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise MemoryValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "title" in updates and not str(updates["title"]).strip():
            raise MemoryValidationError("title must not be empty")
        if "severity" in updates and updates["severity"] not in {"low", "medium", "high"}:
            raise MemoryValidationError(f"Invalid severity: {updates['severity']}")
        with self.sql_store.session() as sess:
            row = self._require_row(sess, memory_id)
            for name, value in updates.items():
                if name == "tags":
                    value = normalize_tags(list(value))
                elif name in {"title", "content", "rule"}:
                    value = str(value).strip()
                setattr(row, name, value)
        return self.get_memory(memory_id)

    def update_strength(self, memory_id: str, delta: float) -> float:
        """Shift synaptic strength by ``delta``, clamped to [0.3, 2.0]."""
        with self.sql_store.session() as sess:
            row = self._require_row(sess, memory_id)
            row.synaptic_strength = max(0.3, min(2.0, row.synaptic_strength + delta))
            return row.synaptic_strength

    def set_strengths(self, strengths: Mapping[str, float]) -> int:
        """Write synaptic strengths for existing memories; unknown ids are skipped."""
        updated = 0
        with self.sql_store.session() as sess:
            for memory_id, value in strengths.items():
                row = self._row(sess, memory_id)
                if row is None:
                    continue
                row.synaptic_strength = max(0.3, min(2.0, value))
                updated += 1
        return updated

    def increment_access(self, memory_ids: Iterable[str]) -> int:
        ids = set(memory_ids)
        if not ids:
            return 0
        timestamp = utc_now()
        with self.sql_store.session() as sess:
            rows = self._project_query(sess).filter(MemoryRow.id.in_(ids)).all()
            for row in rows:
                row.access_count += 1
                row.last_accessed = timestamp
            return len(rows)

    def mark_superseded(self, memory_id: str, superseded_by: str) -> None:
        with self.sql_store.session() as sess:
            row = self._require_row(sess, memory_id)
            row.superseded_by = superseded_by

    def add_link(self, source_id: str, target_id: str, relationship: LinkRelationship) -> None:
        """Create a link and its mirror in one transaction."""
        with self.sql_store.session() as sess:
            source_row = self._require_row(sess, source_id)
            target_row = self._require_row(sess, target_id)
            source = self._row_to_record(source_row)
            target = self._row_to_record(target_row)
            add_link_pair(source, target, relationship)
            source_row.links = self._dump_links(source)
            target_row.links = self._dump_links(target)

    def clean_dangling_links(self, valid_ids: Iterable[str] | None = None) -> int:
        """Drop links whose target is no longer a live memory."""
        removed = 0
        with self.sql_store.session() as sess:
            rows = self._project_query(sess).all()
            valid = set(valid_ids) if valid_ids is not None else {row.id for row in rows}
            for row in rows:
                links = list(row.links or [])
                cleaned = [link for link in links if link.get("target_id") in valid]
                if len(cleaned) != len(links):
                    removed += len(links) - len(cleaned)
                    row.links = cleaned
        return removed

    def delete_memory(self, memory_id: str) -> None:
        """Remove a memory and every link pointing at it."""
        with self.sql_store.session() as sess:
            row = self._require_row(sess, memory_id)
            sess.delete(row)
            for other in self._project_query(sess).filter(MemoryRow.id != memory_id).all():
                links = list(other.links or [])
                cleaned = [link for link in links if link.get("target_id") != memory_id]
                if len(cleaned) != len(links):
                    other.links = cleaned
        logger.info("deleted memory %s", memory_id)

    # ── archive ──────────────────────────────────────────────────

    def archive_memories(self, archived: Sequence[ArchivedMemory]) -> int:
        """Move records out of the live set into the archive collection."""
        moved = 0
        timestamp = utc_now()
        with self.sql_store.session() as sess:
            for item in archived:
                row = self._row(sess, item.memory.id)
                if row is None:
                    continue
                sess.delete(row)
                sess.merge(
                    ArchivedMemoryRow(
                        memory_id=item.memory.id,
                        project_id=self.project_id,
                        payload=item.memory.model_dump(mode="json"),
                        reason=item.reason,
                        archived_at=item.archived_at,
                        score_at_archive=item.score_at_archive,
                    )
                )
                moved += 1
            meta = self._read_document(sess, ARCHIVE_META_DOC)
            meta["total_archived"] = int(meta.get("total_archived", 0)) + moved
            meta["last_pruned"] = timestamp.isoformat()
            self._write_document(sess, ARCHIVE_META_DOC, meta)
        return moved

    def list_archive(self) -> list[ArchivedMemory]:
        with self.sql_store.session() as sess:
            rows = (
                sess.query(ArchivedMemoryRow)
                .filter(ArchivedMemoryRow.project_id == self.project_id)
                .order_by(ArchivedMemoryRow.archived_at.asc())
                .all()
            )
            return [self._archive_row_to_model(row) for row in rows]

    def get_archived(self, memory_id: str) -> ArchivedMemory:
        with self.sql_store.session() as sess:
            row = sess.get(ArchivedMemoryRow, memory_id)
            if row is None or row.project_id != self.project_id:
                raise MemoryNotFoundError("archived memory", memory_id)
            return self._archive_row_to_model(row)

    def restore_memory(self, memory_id: str) -> MemoryRecord:
        """Bring an archived record back into the live set.

        Links are re-paired against live targets; links to records that are
        gone are dropped.
        """
        archived = self.get_archived(memory_id)
        record = restore_from_archive(archived)
        archived_links, record.links = list(record.links), []
        with self.sql_store.session() as sess:
            row = sess.get(ArchivedMemoryRow, memory_id)
            if row is not None:
                sess.delete(row)
            for link in archived_links:
                target_row = self._row(sess, link.target_id)
                if target_row is None or target_row.id == record.id:
                    continue
                target = self._row_to_record(target_row)
                add_link_pair(record, target, link.relationship, created_at=link.created_at)
                target_row.links = self._dump_links(target)
            sess.merge(self._record_to_row(record))
        logger.info("restored memory %s from archive", memory_id)
        return self.get_memory(memory_id)

    def archive_metadata(self) -> dict[str, Any]:
        with self.sql_store.session() as sess:
            return self._read_document(sess, ARCHIVE_META_DOC)

    # ── brain state and expectation model ────────────────────────

    def load_brain_state(self) -> BrainState | None:
        with self.sql_store.session() as sess:
            payload = self._read_document(sess, BRAIN_STATE_DOC)
        return BrainState.model_validate(payload) if payload else None

    def save_brain_state(self, state: BrainState) -> None:
        with self.sql_store.session() as sess:
            self._write_document(sess, BRAIN_STATE_DOC, state.model_dump(mode="json"))

    def load_expectation_model(self) -> ExpectationModel:
        with self.sql_store.session() as sess:
            payload = self._read_document(sess, EXPECTATION_DOC)
        return ExpectationModel.model_validate(payload) if payload else ExpectationModel()

    def save_expectation_model(self, model: ExpectationModel) -> None:
        with self.sql_store.session() as sess:
            self._write_document(sess, EXPECTATION_DOC, model.model_dump(mode="json"))

    # ── cortex ───────────────────────────────────────────────────

    def load_cortex_store(self) -> CortexLearnedStore:
        with self.sql_store.session() as sess:
            rows = (
                sess.query(CortexEntryRow)
                .filter(CortexEntryRow.project_id == self.project_id)
                .order_by(CortexEntryRow.id.asc())
                .all()
            )
            entries = [
                LearnedCortexEntry(
                    word=row.word,
                    tags=list(row.tags or []),
                    confidence=row.confidence,
                    observation_count=row.observation_count,
                    first_seen=as_utc(row.first_seen),
                    last_seen=as_utc(row.last_seen),
                    promoted=row.promoted,
                )
                for row in rows
            ]
            meta = self._read_document(sess, CORTEX_META_DOC)
        store = CortexLearnedStore(entries=entries, total_gaps_processed=int(meta.get("total_gaps_processed", 0)))
        if meta.get("last_updated"):
            store.last_updated = datetime.fromisoformat(meta["last_updated"])
        return store

    def save_cortex_store(self, store: CortexLearnedStore) -> None:
        """Replace the learned overlay for this project."""
        with self.sql_store.session() as sess:
            sess.query(CortexEntryRow).filter(CortexEntryRow.project_id == self.project_id).delete()
            for entry in store.entries:
                sess.add(
                    CortexEntryRow(
                        project_id=self.project_id,
                        word=entry.word,
                        tags=list(entry.tags),
                        confidence=entry.confidence,
                        observation_count=entry.observation_count,
                        first_seen=entry.first_seen,
                        last_seen=entry.last_seen,
                        promoted=entry.promoted,
                    )
                )
            self._write_document(
                sess,
                CORTEX_META_DOC,
                {
                    "total_gaps_processed": store.total_gaps_processed,
                    "last_updated": as_utc(store.last_updated).isoformat(),
                },
            )

    def merged_cortex(self) -> dict[str, list[str]]:
        """Seed table plus confident learned entries."""
        return merge_cortex(self.seed_table, self.load_cortex_store().entries, self.cortex_threshold)

    def mark_cortex_promoted(self, word: str) -> LearnedCortexEntry:
        store = self.load_cortex_store()
        for entry in store.entries:
            if entry.word == word:
                entry.promoted = True
                self.save_cortex_store(store)
                return entry
        raise MemoryNotFoundError("cortex entry", word)

    # ── learned rules ────────────────────────────────────────────

    def load_rules(self) -> list[LearnedRule]:
        with self.sql_store.session() as sess:
            rows = (
                sess.query(LearnedRuleRow)
                .filter(LearnedRuleRow.project_id == self.project_id)
                .order_by(LearnedRuleRow.created_at.asc())
                .all()
            )
            return [
                LearnedRule(
                    id=row.id,
                    rule=row.rule,
                    type=row.type,
                    tags=list(row.tags or []),
                    source_memory_ids=list(row.source_memory_ids or []),
                    confidence=row.confidence,
                    observation_count=row.observation_count,
                    promoted=row.promoted,
                    created_at=as_utc(row.created_at),
                    last_reinforced=as_utc(row.last_reinforced),
                )
                for row in rows
            ]

    def save_rules(self, rules: Sequence[LearnedRule]) -> None:
        with self.sql_store.session() as sess:
            sess.query(LearnedRuleRow).filter(LearnedRuleRow.project_id == self.project_id).delete()
            for rule in rules:
                sess.add(
                    LearnedRuleRow(
                        id=rule.id,
                        project_id=self.project_id,
                        rule=rule.rule,
                        type=rule.type,
                        tags=list(rule.tags),
                        source_memory_ids=list(rule.source_memory_ids),
                        confidence=rule.confidence,
                        observation_count=rule.observation_count,
                        promoted=rule.promoted,
                        created_at=rule.created_at,
                        last_reinforced=rule.last_reinforced,
                    )
                )

    def get_rule(self, rule_id: str) -> LearnedRule:
        for rule in self.load_rules():
            if rule.id == rule_id:
                return rule
        raise MemoryNotFoundError("learned rule", rule_id)

    # ── helpers ──────────────────────────────────────────────────

    def _project_query(self, sess: Session):
        return sess.query(MemoryRow).filter(MemoryRow.project_id == self.project_id)

    def _row(self, sess: Session, memory_id: str) -> MemoryRow | None:
        row = sess.get(MemoryRow, memory_id)
        if row is None or row.project_id != self.project_id:
            return None
        return row

    def _require_row(self, sess: Session, memory_id: str) -> MemoryRow:
        row = self._row(sess, memory_id)
        if row is None:
            raise MemoryNotFoundError("memory", memory_id)
        return row

    def _read_document(self, sess: Session, name: str) -> dict[str, Any]:
        row = sess.get(BrainDocumentRow, (self.project_id, name))
        return dict(row.payload or {}) if row is not None else {}

    def _write_document(self, sess: Session, name: str, payload: dict[str, Any]) -> None:
        row = sess.get(BrainDocumentRow, (self.project_id, name))
        if row is None:
            sess.add(BrainDocumentRow(project_id=self.project_id, name=name, payload=payload))
        else:
            row.payload = payload
            row.updated_at = utc_now()

    @staticmethod
    def _dump_links(record: MemoryRecord) -> list[dict[str, Any]]:
        return [link.model_dump(mode="json") for link in record.links]

    def _record_to_row(self, record: MemoryRecord) -> MemoryRow:
        return MemoryRow(
            id=record.id,
            project_id=record.project_id,
            type=record.type,
            title=record.title,
            content=record.content,
            rule=record.rule,
            tags=list(record.tags),
            severity=record.severity,
            synaptic_strength=record.synaptic_strength,
            access_count=record.access_count,
            last_accessed=record.last_accessed,
            created_at=record.created_at,
            quality_score=record.quality_score,
            fingerprint=record.fingerprint,
            links=self._dump_links(record),
            superseded_by=record.superseded_by,
            related_task_id=record.related_task_id,
            surfaced_memory_ids=list(record.surfaced_memory_ids),
            outcome=record.outcome,
        )

    @staticmethod
    def _row_to_record(row: MemoryRow) -> MemoryRecord:
        return MemoryRecord(
            id=row.id,
            project_id=row.project_id,
            type=row.type,
            title=row.title,
            content=row.content or "",
            rule=row.rule or "",
            tags=list(row.tags or []),
            severity=row.severity,
            synaptic_strength=row.synaptic_strength,
            access_count=row.access_count,
            last_accessed=as_utc(row.last_accessed),
            created_at=as_utc(row.created_at),
            quality_score=row.quality_score,
            fingerprint=row.fingerprint,
            links=list(row.links or []),
            superseded_by=row.superseded_by,
            related_task_id=row.related_task_id,
            surfaced_memory_ids=list(row.surfaced_memory_ids or []),
            outcome=row.outcome,
        )

    @staticmethod
    def _archive_row_to_model(row: ArchivedMemoryRow) -> ArchivedMemory:
        return ArchivedMemory(
            memory=MemoryRecord.model_validate(row.payload),
            reason=row.reason,
            archived_at=as_utc(row.archived_at),
            score_at_archive=row.score_at_archive,
        )
