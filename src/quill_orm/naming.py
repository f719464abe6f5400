"""Table and column naming helpers."""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

_UNCOUNTABLE = frozenset(
    {"equipment", "information", "money", "series", "species", "data", "metadata"}
)

_IRREGULAR = {
    "person": "people",
    "man": "men",
    "woman": "women",
    "child": "children",
    "mouse": "mice",
}


def snake_case(name: str) -> str:
    """``UserLanguage`` → ``user_language``; ``HTTPRequest`` → ``http_request``."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def pluralize(word: str) -> str:
    """Pluralise the last ``_``-separated segment of *word*."""
    head, sep, last = word.rpartition("_")
    return f"{head}{sep}{_pluralize_word(last)}"


def _pluralize_word(word: str) -> str:
    if not word or word in _UNCOUNTABLE:
        return word
    if word in _IRREGULAR:
        return _IRREGULAR[word]
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    if word.endswith("y") and word[-2:-1] not in ("a", "e", "i", "o", "u"):
        return word[:-1] + "ies"
    return word + "s"


def table_name_for(class_name: str, *, singular: bool = False) -> str:
    """Default table name for a record class name."""
    base = snake_case(class_name)
    return base if singular else pluralize(base)
