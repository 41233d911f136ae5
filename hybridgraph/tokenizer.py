"""Identifier-aware tokenization with Porter stemming.

Every raw token contributes its whole stemmed form plus, when it has more than
one part, its snake_case and camelCase segments::

    >>> tokenize("getUserById")
    ['getuserbyid', 'get', 'user', 'by', 'id']
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List

from nltk.stem import PorterStemmer

# underscores stay inside raw tokens so snake_case can be split afterwards
_SPLIT_RE = re.compile(r"[^a-zA-Z0-9_]+")
_CAMEL_RE = re.compile(r"(?<=[a-z])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

_stemmer = PorterStemmer()


@lru_cache(maxsize=16384)
def stem(word: str) -> str:
    return _stemmer.stem(word.lower())


def raw_tokens(text: str) -> List[str]:
    """Split *text* on non-identifier runs without changing case."""
    if not text:
        return []
    return [t for t in _SPLIT_RE.split(text) if t.strip("_")]


def camel_parts(token: str) -> List[str]:
    return [p for p in _CAMEL_RE.split(token) if p]


def snake_parts(token: str) -> List[str]:
    return [p for p in token.split("_") if p]


def tokenize(text: str) -> List[str]:
    """Return the stemmed token stream for *text*.

    Case is kept until camelCase boundaries have been found, so document
    text and query text go through exactly the same expansion.
    """
    if not text or not isinstance(text, str):
        return []

    expanded: List[str] = []
    for token in raw_tokens(text):
        expanded.append(stem(token.strip("_")))
        segments = snake_parts(token)
        if len(segments) > 1:
            expanded.extend(stem(s) for s in segments)
        for segment in segments:
            parts = camel_parts(segment)
            if len(parts) > 1:
                expanded.extend(stem(p) for p in parts)
    return expanded


def tokenize_fields(fields: Iterable[str]) -> List[str]:
    """Token multiset of several text fields, in field order."""
    tokens: List[str] = []
    for value in fields:
        if value:
            tokens.extend(tokenize(value))
    return tokens
