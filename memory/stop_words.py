"""Shared stop-word list for keyword extraction and tagging."""

from __future__ import annotations

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "also", "an", "and", "any",
        "are", "as", "at", "be", "because", "been", "before", "being", "below",
        "between", "both", "but", "by", "can", "could", "did", "do", "does", "doing",
        "done", "during", "each", "every", "few", "for", "from", "further", "has",
        "had", "have", "he", "her", "here", "his", "how", "i", "if", "in", "into",
        "is", "it", "its", "just", "like", "may", "me", "might", "more", "most", "my",
        "no", "not", "of", "off", "on", "once", "one", "only", "or", "other", "our",
        "out", "over", "own", "same", "shall", "she", "should", "so", "some", "such",
        "than", "that", "the", "their", "them", "then", "there", "these", "they",
        "this", "through", "to", "too", "under", "up", "use", "used", "using", "very",
        "was", "we", "were", "what", "when", "where", "which", "while", "who", "whom",
        "why", "will", "with", "would", "you", "your",
    }
)


def is_stop_word(word: str) -> bool:
    """Return True when word is in the shared stop list."""
    return word.lower() in STOP_WORDS


def remove_stop_words(words: list[str]) -> list[str]:
    """Drop stop words and single characters, preserving order."""
    return [word for word in words if len(word) >= 2 and word.lower() not in STOP_WORDS]
