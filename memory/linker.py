"""Relationship discovery and mirrored link graph helpers."""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from memory.cortex import TOKEN_RE
from memory.schemas import as_utc, utc_now
from memory.stop_words import STOP_WORDS
from memory.types.memory import LinkRelationship, MemoryLink, MemoryRecord

LINK_WEIGHTS: dict[str, float] = {
    "supersedes": 0.9,
    "superseded_by": 0.9,
    "contradicts": 0.7,
    "similar": 0.6,
    "related": 0.4,
}

RESOLVES_WEIGHT = 0.8
MAX_LINKS = 10

REVERSE_RELATIONSHIP: dict[str, LinkRelationship] = {
    "supersedes": "superseded_by",
    "superseded_by": "supersedes",
    "contradicts": "contradicts",
    "similar": "similar",
    "related": "related",
}

NEGATION_PAIRS: tuple[tuple[str, str], ...] = (
    ("always", "never"),
    ("must", "must not"),
    ("do", "do not"),
    ("should", "should not"),
    ("safe", "unsafe"),
    ("safe", "dangerous"),
    ("works", "broken"),
    ("works", "fails"),
    ("correct", "incorrect"),
    ("correct", "wrong"),
    ("enable", "disable"),
    ("allow", "block"),
    ("allow", "deny"),
    ("success", "failure"),
    ("add", "remove"),
    ("include", "exclude"),
)

_TITLE_CLEAN_RE = re.compile(r"[^a-z0-9\s]")


@dataclass
class CandidateLink:
    target_id: str
    relationship: LinkRelationship
    weight: float
    reason: str

    @property
    def is_warning(self) -> bool:
        return self.relationship in {"contradicts", "supersedes"}


@dataclass
class GraphEdge:
    other_id: str
    relationship: str
    weight: float


@dataclass
class GraphNode:
    memory_id: str
    outgoing: list[GraphEdge] = field(default_factory=list)
    incoming: list[GraphEdge] = field(default_factory=list)


@dataclass
class TraversedMemory:
    memory: MemoryRecord
    depth: int
    path_weight: float
    via: list[tuple[str, str]]


def _keywords(text: str) -> set[str]:
    return {
        word
        for word in TOKEN_RE.findall(text.lower())
        if len(word) >= 3 and word not in STOP_WORDS
    }


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


def _clean_title(title: str) -> str:
    return _TITLE_CLEAN_RE.sub("", title.lower()).strip()


def compute_similarity(a: MemoryRecord, b: MemoryRecord) -> float:
    """Tag Jaccard (0.6) plus keyword Jaccard over title/content/rule (0.4)."""
    tags_a, tags_b = set(a.tags), set(b.tags)
    tag_union = tags_a | tags_b
    tag_sim = len(tags_a & tags_b) / len(tag_union) if tag_union else 0.0

    kw_a, kw_b = _keywords(a.text), _keywords(b.text)
    kw_union = kw_a | kw_b
    kw_sim = len(kw_a & kw_b) / len(kw_union) if kw_union else 0.0
    return tag_sim * 0.6 + kw_sim * 0.4


def detect_contradiction(a: MemoryRecord, b: MemoryRecord) -> float:
    """Contradiction strength in [0, 1]; requires a shared domain (2+ tags)."""
    shared = set(a.tags) & set(b.tags)
    if len(shared) < 2:
        return 0.0

    score = 0.0
    if {a.type, b.type} == {"pain", "win"}:
        score = max(score, 0.7 if len(shared) >= 3 else 0.4)

    text_a = f"{a.rule} {a.content}".lower()
    text_b = f"{b.rule} {b.content}".lower()
    for positive, negative in NEGATION_PAIRS:
        a_pos, a_neg = _contains_phrase(text_a, positive), _contains_phrase(text_a, negative)
        b_pos, b_neg = _contains_phrase(text_b, positive), _contains_phrase(text_b, negative)
        if (a_pos and b_neg) or (a_neg and b_pos):
            overlap = min(1.0, len(shared) / 4)
            score = max(score, 0.5 + overlap * 0.3)
            break

    title_a, title_b = _clean_title(a.title), _clean_title(b.title)
    if (
        len(title_a) > 10
        and len(title_b) > 10
        and title_a[:30] == title_b[:30]
        and a.rule
        and b.rule
        and a.rule != b.rule
    ):
        score = max(score, 0.6)

    return min(1.0, score)


def detect_supersession(new: MemoryRecord, old: MemoryRecord) -> float:
    """How strongly ``new`` replaces ``old``: same type, newer, same title, shared tags."""
    if new.type != old.type:
        return 0.0
    if as_utc(new.created_at) <= as_utc(old.created_at):
        return 0.0

    new_title, old_title = _clean_title(new.title), _clean_title(old.title)
    if new_title == old_title:
        score = 0.6
    elif len(new_title) > 10 and len(old_title) > 10 and new_title[:40] == old_title[:40]:
        score = 0.4
    else:
        return 0.0

    shared = set(new.tags) & set(old.tags)
    union = set(new.tags) | set(old.tags)
    jaccard = len(shared) / len(union) if union else 0.0
    if len(shared) >= 3 or jaccard >= 0.6:
        score += 0.3
    elif len(shared) >= 2:
        score += 0.15
    else:
        return 0.0

    old_kw = _keywords(old.text)
    if old_kw and len(old_kw & _keywords(new.text)) / len(old_kw) >= 0.5:
        score += 0.1
    return min(1.0, score)


def find_links(new: MemoryRecord, pool: Iterable[MemoryRecord], max_links: int = MAX_LINKS) -> list[CandidateLink]:
    """Candidate links from a freshly accepted memory, strongest first."""
    candidates: list[CandidateLink] = []
    for existing in pool:
        if existing.id == new.id:
            continue

        supersession = detect_supersession(new, existing)
        if supersession >= 0.5:
            candidates.append(
                CandidateLink(
                    target_id=existing.id,
                    relationship="supersedes",
                    weight=LINK_WEIGHTS["supersedes"] * supersession,
                    reason=f"Supersedes #{existing.id} (score: {supersession:.2f}, same topic with newer info)",
                )
            )
            continue

        similarity = compute_similarity(new, existing)
        shared = set(new.tags) & set(existing.tags)
        if {new.type, existing.type} == {"pain", "win"} and len(shared) >= 3 and similarity >= 0.25:
            candidates.append(
                CandidateLink(
                    target_id=existing.id,
                    relationship="related",
                    weight=RESOLVES_WEIGHT * similarity,
                    reason=f"Win/pain resolution with #{existing.id} (similarity: {similarity:.2f})",
                )
            )
            continue

        contradiction = detect_contradiction(new, existing)
        if contradiction >= 0.5:
            candidates.append(
                CandidateLink(
                    target_id=existing.id,
                    relationship="contradicts",
                    weight=LINK_WEIGHTS["contradicts"] * contradiction,
                    reason=f"Contradicts #{existing.id} (score: {contradiction:.2f})",
                )
            )
            continue

        if similarity >= 0.4 and new.type == existing.type:
            candidates.append(
                CandidateLink(
                    target_id=existing.id,
                    relationship="similar",
                    weight=LINK_WEIGHTS["similar"] * similarity,
                    reason=f"Similar to #{existing.id} (similarity: {similarity:.2f}, same type: {existing.type})",
                )
            )
        elif similarity >= 0.25:
            candidates.append(
                CandidateLink(
                    target_id=existing.id,
                    relationship="related",
                    weight=LINK_WEIGHTS["related"] * similarity,
                    reason=f"Related to #{existing.id} (similarity: {similarity:.2f})",
                )
            )

    candidates.sort(key=lambda link: link.weight, reverse=True)
    return candidates[:max_links]


def add_link_pair(
    source: MemoryRecord,
    target: MemoryRecord,
    relationship: LinkRelationship,
    created_at: datetime | None = None,
) -> tuple[bool, bool]:
    """Write the forward edge on ``source`` and its mirror on ``target``.

    Existing (target, relationship) pairs are left alone. Returns which of
    the two edges were newly created.
    """
    timestamp = created_at or utc_now()
    reverse = REVERSE_RELATIONSHIP[relationship]
    forward_added = False
    mirror_added = False
    if not source.has_link(target.id, relationship):
        source.links.append(MemoryLink(target_id=target.id, relationship=relationship, created_at=timestamp))
        forward_added = True
    if not target.has_link(source.id, reverse):
        target.links.append(MemoryLink(target_id=source.id, relationship=reverse, created_at=timestamp))
        mirror_added = True
    return forward_added, mirror_added


def build_link_graph(memories: Sequence[MemoryRecord]) -> dict[str, GraphNode]:
    """Adjacency map with outgoing and incoming edges per memory."""
    graph = {memory.id: GraphNode(memory_id=memory.id) for memory in memories}
    for memory in memories:
        node = graph[memory.id]
        for link in memory.links:
            weight = LINK_WEIGHTS.get(link.relationship, LINK_WEIGHTS["related"])
            node.outgoing.append(GraphEdge(link.target_id, link.relationship, weight))
            target = graph.get(link.target_id)
            if target is not None:
                target.incoming.append(GraphEdge(memory.id, link.relationship, weight))
    return graph


def traverse_links(memory_id: str, memories: Sequence[MemoryRecord], depth: int = 2) -> list[TraversedMemory]:
    """Breadth-first walk from one memory; weights multiply per hop.

    Incoming edges are followed from the start node at a 0.7 discount. Each
    memory appears once, on its best-weighted path.
    """
    if depth < 1:
        return []
    by_id = {memory.id: memory for memory in memories}
    graph = build_link_graph(memories)
    start = graph.get(memory_id)
    if start is None:
        return []

    queue: deque[tuple[str, int, float, list[tuple[str, str]]]] = deque()
    for edge in start.outgoing:
        queue.append((edge.other_id, 1, edge.weight, [(memory_id, edge.relationship)]))
    for edge in start.incoming:
        queue.append((edge.other_id, 1, edge.weight * 0.7, [(memory_id, edge.relationship)]))

    best: dict[str, float] = {}
    results: dict[str, TraversedMemory] = {}
    while queue:
        current_id, current_depth, weight, path = queue.popleft()
        if current_id == memory_id or weight <= best.get(current_id, 0.0):
            continue
        best[current_id] = weight
        memory = by_id.get(current_id)
        if memory is None:
            continue
        results[current_id] = TraversedMemory(memory=memory, depth=current_depth, path_weight=weight, via=path)

        if current_depth >= depth:
            continue
        for edge in graph[current_id].outgoing:
            if edge.other_id == memory_id:
                continue
            next_weight = weight * edge.weight
            if next_weight > best.get(edge.other_id, 0.0):
                queue.append(
                    (edge.other_id, current_depth + 1, next_weight, path + [(current_id, edge.relationship)])
                )

    return sorted(results.values(), key=lambda item: item.path_weight, reverse=True)


def traverse_links_for_retrieval(
    scored: Mapping[str, float],
    viable: Mapping[str, MemoryRecord],
) -> tuple[dict[str, float], int]:
    """One-hop score propagation used during retrieval.

    Contradiction and supersession edges carry no retrieval boost.
    """
    additional: dict[str, float] = {}
    traversals = 0
    for memory_id, base_score in scored.items():
        if base_score == 0:
            continue
        memory = viable.get(memory_id)
        if memory is None:
            continue
        for link in memory.links:
            if link.relationship in {"contradicts", "supersedes", "superseded_by"}:
                continue
            if link.target_id not in viable:
                continue
            propagated = base_score * LINK_WEIGHTS.get(link.relationship, LINK_WEIGHTS["related"])
            current = additional.get(link.target_id, scored.get(link.target_id, 0.0))
            if propagated > current:
                additional[link.target_id] = propagated
                traversals += 1
    return additional, traversals
