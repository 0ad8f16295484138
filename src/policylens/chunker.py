"""Sentence-greedy text chunker.

Deterministic and eager: the same text always yields the same chunk list.
Chunks never exceed ``max_chunk_size`` characters; a sentence longer than
that is hard-split at whitespace before packing.
"""

from __future__ import annotations

import re

from policylens.models.analysis import ContentChunk

DEFAULT_MAX_CHUNK_SIZE = 2000
DEFAULT_MIN_CHUNK_SIZE = 50
MIN_SENTENCE_LENGTH = 10  # Shorter fragments are menu items and stray punctuation

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    sentences = (s.strip() for s in _SENTENCE_SPLIT_RE.split(text.strip()))
    return [s for s in sentences if len(s) > MIN_SENTENCE_LENGTH]


def _hard_split(sentence: str, max_size: int) -> list[str]:
    """Cut an over-long sentence into pieces of at most ``max_size`` characters."""
    pieces: list[str] = []
    rest = sentence
    while len(rest) > max_size:
        cut = rest.rfind(" ", 0, max_size + 1)
        if cut <= 0:
            cut = max_size
        pieces.append(rest[:cut].strip())
        rest = rest[cut:].strip()
    if rest:
        pieces.append(rest)
    return pieces


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
) -> list[ContentChunk]:
    """Pack sentences into chunks of at most ``max_chunk_size`` characters.

    Chunks shorter than ``min_chunk_size`` are discarded after packing. The
    ordinal of a chunk is its position in the packed sequence, so discarded
    chunks leave gaps.
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")

    packed: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        for piece in _hard_split(sentence, max_chunk_size):
            candidate = f"{current} {piece}" if current else piece
            if len(candidate) <= max_chunk_size:
                current = candidate
                continue
            packed.append(current)
            current = piece
    if current:
        packed.append(current)

    return [
        ContentChunk(text=chunk, ordinal=ordinal)
        for ordinal, chunk in enumerate(packed)
        if len(chunk) >= min_chunk_size
    ]
