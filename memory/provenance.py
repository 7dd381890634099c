"""Hashing and identifier helpers."""

from __future__ import annotations

import hashlib
import uuid


def sha256_text(text: str) -> str:
    """Return SHA-256 hex digest for text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def short_digest(text: str, length: int = 12) -> str:
    """Stable truncated digest used for fingerprints."""
    return sha256_text(text)[:length]


def new_record_id(prefix: str) -> str:
    """Store-assigned identifier such as ``mem_3f9c0a1b2d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
