"""Static cortex: seed word-to-tag table, attention cues and text helpers."""

from __future__ import annotations

import re
from collections.abc import Mapping

TOKEN_RE = re.compile(r"\b\w[\w.-]*\b")

DEFAULT_CORTEX: dict[str, list[str]] = {
    # version control and hosting
    "git": ["git", "version-control"],
    "github": ["github", "git"],
    "repo": ["github", "git"],
    "repository": ["github", "git"],
    "commit": ["github", "git"],
    "branch": ["git"],
    "merge": ["git"],
    "rebase": ["git"],
    "pr": ["github", "git"],
    "pull": ["github", "git"],
    # packaging and dependencies
    "pip": ["python", "dependencies"],
    "poetry": ["python", "dependencies"],
    "npm": ["npm", "dependencies", "packages"],
    "package": ["dependencies", "packages"],
    "install": ["dependencies"],
    "dependency": ["dependencies"],
    "dependencies": ["dependencies"],
    "publish": ["packages", "deployment"],
    "wheel": ["python", "packages"],
    "python": ["python"],
    "pytest": ["testing", "python"],
    # delivery
    "deploy": ["deployment", "infrastructure"],
    "deploying": ["deployment"],
    "deployment": ["deployment"],
    "production": ["deployment"],
    "release": ["deployment", "packages"],
    "ship": ["deployment"],
    "docker": ["infrastructure", "deployment"],
    "kubernetes": ["infrastructure", "deployment"],
    "ci": ["ci-cd", "deployment"],
    "pipeline": ["ci-cd"],
    "build": ["build", "compilation"],
    "compile": ["build", "compilation"],
    # quality
    "test": ["testing"],
    "tests": ["testing"],
    "testing": ["testing"],
    "flaky": ["testing", "debugging"],
    "refactor": ["refactoring", "architecture"],
    "lint": ["code-quality"],
    "typing": ["code-quality", "python"],
    # errors and debugging
    "bug": ["debugging", "errors"],
    "error": ["errors", "debugging"],
    "exception": ["errors", "debugging"],
    "crash": ["errors", "debugging"],
    "traceback": ["errors", "debugging"],
    "fix": ["debugging"],
    "regression": ["testing", "debugging"],
    # security and auth
    "auth": ["authentication", "security"],
    "login": ["authentication"],
    "password": ["authentication", "security"],
    "token": ["authentication", "security"],
    "secret": ["security", "configuration"],
    "credential": ["security", "authentication"],
    "security": ["security"],
    "permission": ["security"],
    # data
    "database": ["database"],
    "db": ["database"],
    "sql": ["database"],
    "sqlite": ["database"],
    "postgres": ["database"],
    "query": ["database"],
    "migration": ["database", "migration"],
    "schema": ["database", "architecture"],
    "index": ["database", "performance"],
    "cache": ["caching", "performance"],
    # apis and frontend
    "api": ["api", "integration"],
    "endpoint": ["api"],
    "http": ["api", "network"],
    "request": ["api", "network"],
    "timeout": ["network", "performance"],
    "webhook": ["api", "integration"],
    "react": ["react", "frontend"],
    "component": ["frontend"],
    "css": ["styling", "frontend"],
    # performance and concurrency
    "performance": ["performance", "optimization"],
    "slow": ["performance"],
    "memory": ["memory", "performance"],
    "leak": ["memory", "debugging"],
    "async": ["concurrency"],
    "thread": ["concurrency"],
    "lock": ["concurrency", "database"],
    "race": ["concurrency", "debugging"],
    # configuration and environment
    "config": ["configuration"],
    "configuration": ["configuration"],
    "env": ["configuration", "environment"],
    "environment": ["environment"],
    "yaml": ["configuration"],
    "windows": ["windows", "environment"],
    "path": ["environment"],
    # design
    "architecture": ["architecture"],
    "design": ["architecture", "design"],
    "interface": ["architecture", "api"],
    "payment": ["payments"],
    "stripe": ["payments"],
    "logging": ["observability"],
    "log": ["observability"],
    "metrics": ["observability"],
}

ATTENTION_PATTERNS: dict[str, str] = {
    "deploy": "DEPLOYMENT detected: check deployment memories",
    "production": "PRODUCTION context: extra caution required",
    "security": "SECURITY context: review security memories",
    "delete": "DESTRUCTIVE operation: check for related pain memories",
    "payment": "PAYMENT context: mandatory human review",
    "migration": "MIGRATION detected: check for related pain memories",
}

HIGH_SEVERITY_WORDS: tuple[str, ...] = (
    "critical", "never", "always", "hours", "broke", "lost", "destroyed",
    "catastrophe", "disaster", "data loss", "irreversible", "production",
    "security", "credential", "password", "secret",
)

MEDIUM_SEVERITY_WORDS: tuple[str, ...] = (
    "important", "careful", "warning", "gotcha", "tricky", "subtle",
    "mistake", "bug", "wrong",
)


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens (dots and dashes kept inside words), unique, in order."""
    seen: dict[str, None] = {}
    for token in TOKEN_RE.findall(text.lower()):
        seen.setdefault(token, None)
    return list(seen)


def infer_tags(
    title: str,
    content: str = "",
    rule: str = "",
    cortex: Mapping[str, list[str]] | None = None,
    cap: int = 8,
) -> list[str]:
    """Map words in the text to topic tags through the cortex."""
    table = DEFAULT_CORTEX if cortex is None else cortex
    tags: list[str] = []
    for word in tokenize(f"{title} {content} {rule}"):
        for tag in table.get(word, []):
            if tag not in tags:
                tags.append(tag)
    return tags[:cap]


def infer_severity(content: str, rule: str = "") -> str:
    """Keyword-based severity guess used when the caller gives none."""
    text = f"{content} {rule}".lower()
    if any(word in text for word in HIGH_SEVERITY_WORDS):
        return "high"
    if any(word in text for word in MEDIUM_SEVERITY_WORDS):
        return "medium"
    return "low"


def build_seed_table(extra: Mapping[str, list[str]] | None = None) -> dict[str, list[str]]:
    """Default cortex plus deployment-specific additions from config."""
    table = {word: list(tags) for word, tags in DEFAULT_CORTEX.items()}
    for word, tags in (extra or {}).items():
        merged = table.setdefault(word.lower(), [])
        for tag in tags:
            if tag not in merged:
                merged.append(tag)
    return table
