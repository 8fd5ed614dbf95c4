"""heritage_rag.retrieval.text_splitter

Sentence-aware text chunking for the ingestion side of the pipeline.

Documents are split into size-bounded chunks that respect sentence
boundaries where possible and repeat a short tail of the previous chunk at
the start of the next one, so that a sentence straddling a boundary keeps
some of its context in both embeddings.

Classes
-------
SentenceChunker
    Configured chunker exposing :meth:`~SentenceChunker.split` and
    :meth:`~SentenceChunker.split_with_metadata`.

Functions
---------
chunk
    Split text into a list of overlapping chunk strings.
chunk_with_metadata
    Split text into :class:`~heritage_rag.common.schemas.Chunk` objects
    carrying positional and document metadata.
chunker_from_config
    Build a :class:`SentenceChunker` from the ``chunking`` config section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from heritage_rag.common.errors import ValidationError
from heritage_rag.common.schemas import Chunk
from heritage_rag.config.settings import ChunkingConfig

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200
DEFAULT_INGEST_CHUNK_SIZE = 450
DEFAULT_INGEST_OVERLAP = 120

# Fraction of the overlap window in which a leading partial word is trimmed.
OVERLAP_TRIM_RATIO = 0.3

_TERMINATORS = ".!?。！？"
_SENTENCE_PATTERN = re.compile(rf"[^{_TERMINATORS}]*[{_TERMINATORS}]+|[^{_TERMINATORS}]+$")
_WHITESPACE = re.compile(r"\s+")


def _validate_sizes(max_chunk_size: int, overlap_size: int) -> None:
    if not isinstance(max_chunk_size, int) or max_chunk_size < 1:
        raise ValidationError(f"max_chunk_size must be a positive integer, got {max_chunk_size!r}")
    if not isinstance(overlap_size, int) or overlap_size < 0:
        raise ValidationError(f"overlap_size must be a non-negative integer, got {overlap_size!r}")
    if overlap_size >= max_chunk_size:
        raise ValidationError(
            f"overlap_size ({overlap_size}) must be smaller than max_chunk_size ({max_chunk_size})"
        )


def _split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, keeping terminators with their sentence."""
    sentences = (s.strip() for s in _SENTENCE_PATTERN.findall(text))
    return [s for s in sentences if s]


def _overlap_tail(chunk: str, overlap_size: int) -> str:
    """Return the trailing text of ``chunk`` repeated at the start of the next chunk.

    The tail is the last ``overlap_size`` characters. When the window begins
    inside a word and a space falls within its first 30%, the partial word is
    trimmed off. A window that is only a fragment of a single word is dropped.
    """
    if overlap_size <= 0:
        return ""
    if len(chunk) <= overlap_size:
        return chunk

    tail = chunk[-overlap_size:]
    space = tail.find(" ")
    if space != -1 and space < overlap_size * OVERLAP_TRIM_RATIO:
        return tail[space + 1:]
    if space == -1 and not chunk[-overlap_size - 1].isspace():
        return ""
    return tail.strip()


def _seed(tail: str, piece: str) -> str:
    return f"{tail} {piece}" if tail else piece


def _split_words(text: str, max_chunk_size: int, overlap_size: int) -> list[str]:
    """Greedy word-level split of ``text``; overlong words are hard-cut."""
    pieces: list[str] = []
    current = ""

    for word in text.split(" "):
        if not word:
            continue
        extended = f"{current} {word}" if current else word
        if len(extended) <= max_chunk_size:
            current = extended
            continue

        if current:
            pieces.append(current)
            current = _seed(_overlap_tail(current, overlap_size), word)
            if len(current) > max_chunk_size:
                current = word
        else:
            current = word

        # lossy: a single word longer than the limit
        while len(current) > max_chunk_size:
            pieces.append(current[:max_chunk_size])
            current = current[max_chunk_size:]

    if current:
        pieces.append(current)
    return pieces


def chunk(
        text: str,
        max_chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap_size: int = DEFAULT_OVERLAP,
    ) -> list[str]:
    """Split ``text`` into size-bounded, overlapping, sentence-respecting chunks.

    Sentences are appended greedily while the chunk fits in
    ``max_chunk_size``. On overflow the current chunk is emitted and the next
    one is seeded with the overlap tail of the emitted chunk followed by the
    overflowing sentence. Sentences that do not fit on their own are split at
    word granularity, and a single word longer than the limit is hard-cut.

    Parameters
    ----------
    text : str
        Raw document text. Whitespace runs are collapsed to one space.
    max_chunk_size : int, optional
        Maximum chunk length in characters. Defaults to 1000.
    overlap_size : int, optional
        Maximum number of characters repeated between consecutive chunks.
        Must be smaller than ``max_chunk_size``. Defaults to 200.

    Returns
    -------
    list[str]
        Non-empty chunks in document order. Empty or non-string input yields
        an empty list.

    Raises
    ------
    ValidationError
        If ``max_chunk_size < 1``, ``overlap_size < 0`` or
        ``overlap_size >= max_chunk_size``.

    Examples
    --------
    >>> chunk("A. B. C.", max_chunk_size=4, overlap_size=1)
    ['A.', 'B.', 'C.']
    """
    _validate_sizes(max_chunk_size, overlap_size)
    if not isinstance(text, str) or not text:
        return []

    text = _WHITESPACE.sub(" ", text.strip())
    if not text:
        return []
    if len(text) <= max_chunk_size:
        return [text]

    chunks: list[str] = []
    current = ""

    for sentence in _split_sentences(text):
        extended = f"{current} {sentence}" if current else sentence
        if len(extended) <= max_chunk_size:
            current = extended
            continue

        if current:
            chunks.append(current)
            seeded = _seed(_overlap_tail(current, overlap_size), sentence)
        else:
            seeded = sentence

        if len(seeded) <= max_chunk_size:
            current = seeded
        else:
            pieces = _split_words(seeded, max_chunk_size, overlap_size)
            chunks.extend(pieces[:-1])
            current = pieces[-1]

    if current:
        chunks.append(current)

    return [c for c in chunks if c.strip()]


def chunk_with_metadata(
        text: str,
        metadata: Mapping[str, Any] | None = None,
        max_chunk_size: int = DEFAULT_INGEST_CHUNK_SIZE,
        overlap_size: int = DEFAULT_INGEST_OVERLAP,
    ) -> list[Chunk]:
    """Chunk ``text`` and attach positional and document metadata.

    Parameters
    ----------
    text : str
        Raw document text.
    metadata : Mapping[str, Any], optional
        Document-level fields copied onto every chunk.
    max_chunk_size : int, optional
        Maximum chunk length in characters. Defaults to 450.
    overlap_size : int, optional
        Overlap between consecutive chunks. Defaults to 120.

    Returns
    -------
    list[Chunk]
        One :class:`Chunk` per chunk string, with ``chunk_index`` and
        ``total_chunks`` set.
    """
    pieces = chunk(text, max_chunk_size=max_chunk_size, overlap_size=overlap_size)
    total = len(pieces)
    return [
        Chunk(
            content=piece,
            chunk_index=index,
            total_chunks=total,
            metadata=dict(metadata or {}),
        )
        for index, piece in enumerate(pieces)
    ]


@dataclass(frozen=True)
class SentenceChunker:
    """Chunker bound to a chunk size and overlap.

    Attributes
    ----------
    max_chunk_size : int
        Maximum chunk length in characters.
    overlap_size : int
        Maximum overlap between consecutive chunks.
    """
    max_chunk_size: int = DEFAULT_INGEST_CHUNK_SIZE
    overlap_size: int = DEFAULT_INGEST_OVERLAP

    def __post_init__(self):
        _validate_sizes(self.max_chunk_size, self.overlap_size)

    def split(self, text: str) -> list[str]:
        return chunk(text, self.max_chunk_size, self.overlap_size)

    def split_with_metadata(
            self,
            text: str,
            metadata: Mapping[str, Any] | None = None,
        ) -> list[Chunk]:
        return chunk_with_metadata(text, metadata, self.max_chunk_size, self.overlap_size)


def chunker_from_config(cfg: ChunkingConfig | Mapping[str, Any] | None = None) -> SentenceChunker:
    """Build a :class:`SentenceChunker` from a ``chunking`` section or struct."""
    if not isinstance(cfg, ChunkingConfig):
        cfg = ChunkingConfig.from_config_dict(cfg)
    return SentenceChunker(max_chunk_size=cfg.max_chunk_size, overlap_size=cfg.overlap_size)


__all__ = [
    "chunk",
    "chunk_with_metadata",
    "SentenceChunker",
    "chunker_from_config",
]
