"""Title heuristics for spotting parallel subjects (same content, different codes)."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

STOP_WORDS = frozenset(
    {"a", "an", "and", "for", "in", "into", "of", "on", "the", "to", "with"}
)
ROMAN_NUMERALS = frozenset({"i", "ii", "iii", "iv", "v", "vi", "vii", "viii", "ix", "x"})

_PARENTHETICAL = re.compile(r"\(([^)]+)\)")
_NON_WORD = re.compile(r"[^a-z0-9\s]+")
_SPACES = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    text = title.lower().replace("&", " and ")
    text = _NON_WORD.sub(" ", text)
    words = [
        word
        for word in _SPACES.split(text.strip())
        if word and word not in STOP_WORDS and word not in ROMAN_NUMERALS and not word.isdigit()
    ]
    return " ".join(words)


def parenthetical_phrase(title: str) -> str | None:
    match = _PARENTHETICAL.search(title)
    if match is None:
        return None
    phrase = normalize_title(match.group(1))
    return phrase or None


def key_phrases(title: str) -> set[str]:
    """Content words and adjacent-word pairs of a normalized title."""
    phrases: set[str] = set()
    parenthetical = parenthetical_phrase(title)
    if parenthetical:
        phrases.add(parenthetical)
    words = normalize_title(title).split()
    phrases.update(words)
    phrases.update(f"{left} {right}" for left, right in zip(words, words[1:]))
    return phrases


def phrase_overlap(left: str, right: str) -> float:
    left_phrases = key_phrases(left)
    right_phrases = key_phrases(right)
    if not left_phrases or not right_phrases:
        return 0.0
    shared = left_phrases & right_phrases
    return len(shared) / min(len(left_phrases), len(right_phrases))


def titles_look_parallel(left: str, right: str, *, threshold: float = 0.6) -> bool:
    normalized_left = normalize_title(left)
    normalized_right = normalize_title(right)
    if not normalized_left or not normalized_right:
        return False
    if normalized_left == normalized_right:
        return True
    left_phrase = parenthetical_phrase(left)
    if left_phrase is not None and left_phrase == parenthetical_phrase(right):
        return True
    return phrase_overlap(left, right) >= threshold


def suggest_parallel_groups(
    subjects: Iterable[tuple[str, str]],
    *,
    threshold: float = 0.6,
) -> list[tuple[str, ...]]:
    """Group ``(subject_id, title)`` pairs whose titles look parallel.

    Only groups with two or more subjects are returned, in input order.
    """
    items = list(subjects)
    parent = list(range(len(items)))

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    for left_index, (_, left_title) in enumerate(items):
        for right_index in range(left_index + 1, len(items)):
            if titles_look_parallel(left_title, items[right_index][1], threshold=threshold):
                root_left, root_right = find(left_index), find(right_index)
                if root_left != root_right:
                    parent[max(root_left, root_right)] = min(root_left, root_right)

    groups: dict[int, list[str]] = {}
    for index, (subject_id, _) in enumerate(items):
        groups.setdefault(find(index), []).append(subject_id)
    return [tuple(members) for root, members in sorted(groups.items()) if len(members) > 1]


def common_descriptive_title(names: Sequence[str]) -> str:
    """Shared parenthetical phrase of parallel subject names, else the first name."""
    if not names:
        return ""
    phrases = []
    for name in names:
        match = _PARENTHETICAL.search(name)
        if match is None:
            return names[0]
        phrases.append(match.group(1).strip())
    if len(set(phrases)) == 1:
        return phrases[0]
    return names[0]
