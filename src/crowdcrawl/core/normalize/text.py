"""
Text cleaning and text metrics for project copy.

All metrics operate on text that has already been through ``clean_text``.
"""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]+>")
_URL_RE = re.compile(r"https?://\S+")
_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_SPECIAL_RE = re.compile(r"[^\w\s.,!?;:()\"'-]")
_SENTENCE_RE = re.compile(r"[.!?]+")

_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}

VOWELS = set("aeiouyAEIOUY")


def normalize_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace into single spaces."""
    if text is None:
        return ""
    return " ".join(text.split())


def clean_text(text: str | None) -> str:
    """Reduce HTML-ish project copy to plain single-line text.

    Removes tags, URLs and email addresses, decodes common entities,
    collapses whitespace, and drops characters other than word
    characters and basic punctuation.
    """
    if not text:
        return ""

    text = _TAG_RE.sub(" ", text)
    for entity, replacement in _ENTITIES.items():
        text = text.replace(entity, replacement)
    text = _URL_RE.sub(" ", text)
    text = _EMAIL_RE.sub(" ", text)
    text = _SPECIAL_RE.sub("", text)
    return normalize_whitespace(text)


def count_words(text: str) -> int:
    """Number of whitespace-separated words."""
    return len(text.split())


def count_syllables(word: str) -> int:
    """Rough syllable count: vowel groups, minus a silent trailing e."""
    count = 0
    prev_vowel = False
    for char in word:
        is_vowel = char in VOWELS
        if is_vowel and not prev_vowel:
            count += 1
        prev_vowel = is_vowel

    if word.lower().endswith("e") and count > 1:
        count -= 1

    return max(1, count)


def readability_score(text: str) -> float:
    """Simplified Flesch reading ease, floored at 0."""
    words = text.split()
    sentences = [s for s in _SENTENCE_RE.split(text) if s.strip()]
    if not words or not sentences:
        return 0.0

    words_per_sentence = len(words) / len(sentences)
    syllables_per_word = sum(count_syllables(w) for w in words) / len(words)

    return max(0.0, 206.835 - 1.015 * words_per_sentence - 84.6 * syllables_per_word)


def _tier(value: int, tiers: list[tuple[int, float]]) -> float:
    for threshold, points in tiers:
        if value > threshold:
            return points
    return 0.0


def text_quality_score(story: str, description: str, risks: str) -> float:
    """Completeness of the project copy on a 0-1 scale.

    Story length earns up to 4 points, description up to 2, risks up to 4.
    """
    score = _tier(count_words(story), [(500, 4.0), (200, 3.0), (100, 2.0), (50, 1.0)])
    score += _tier(count_words(description), [(20, 2.0), (10, 1.0)])
    score += _tier(count_words(risks), [(100, 4.0), (50, 3.0), (20, 2.0), (0, 1.0)])
    return score / 10.0
