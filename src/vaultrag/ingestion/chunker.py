"""Markdown-aware chunking of vault notes.

Chunks are spans of the note text. The splitter walks the document left to
right and, for each chunk, picks the latest preferred break point inside the
size window. Break points are tried in order: heading starts, paragraph
boundaries, line ends, sentence ends, whitespace, and finally a hard cut.
Fenced code blocks are kept whole whenever they fit in a single chunk.

The output depends only on the input text and the chunking parameters, so the
same note always yields the same boundaries and fingerprints.
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

from vaultrag.models import Chunk
from vaultrag.utils.text import content_hash

LOGGER = logging.getLogger(__name__)

# Ordered from most to least preferred
BREAK_PATTERNS = (
    re.compile(r"\n(?=#{1,6}\s)"),
    re.compile(r"\n[ \t]*\n"),
    re.compile(r"\n"),
    re.compile(r"(?<=[.!?])\s+"),
    re.compile(r"\s+"),
)

FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})", re.MULTILINE)
WHITESPACE_RE = re.compile(r"\s")

# A break is only taken past this fraction of the window, to avoid slivers
MIN_FILL_RATIO = 0.25


@dataclass(slots=True, frozen=True)
class ChunkingConfig:
    chunk_size: int = 1000
    overlap: int = 0

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.overlap < 0 or self.overlap >= self.chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")


def find_fences(text: str) -> List[Tuple[int, int]]:
    """Return ``[start, end)`` spans of fenced code blocks.

    A fence closes on a run of the same character at least as long as the
    opener. An unterminated fence runs to the end of the text.
    """
    spans: List[Tuple[int, int]] = []
    open_start = None
    open_marker = ""
    for match in FENCE_RE.finditer(text):
        if open_start is None:
            open_start = match.start()
            open_marker = match.group(1)
        elif match.group(1)[0] == open_marker[0] and len(match.group(1)) >= len(open_marker):
            line_end = text.find("\n", match.end())
            end = len(text) if line_end == -1 else line_end + 1
            spans.append((open_start, end))
            open_start = None
    if open_start is not None:
        spans.append((open_start, len(text)))
    return spans


class MarkdownChunker:
    """Split notes into bounded, boundary-aligned chunks."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, document_path: str, text: str) -> Iterator[Chunk]:
        """Lazily yield the chunks of ``text``. Calling again restarts from the top."""
        if not text or not text.strip():
            return

        size = self.config.chunk_size
        fences = find_fences(text)
        fence_starts = [start for start, _ in fences]
        line_starts = [0] + [m.end() for m in re.finditer(r"\n", text)]

        index = 0
        start = 0
        length = len(text)
        while start < length:
            end = self._find_break(text, start, size, fences, fence_starts)
            span_start, span_end = _trim(text, start, end)
            if span_start < span_end:
                body = text[span_start:span_end]
                yield Chunk(
                    id=f"{document_path}#{index}",
                    document_path=document_path,
                    start_offset=span_start,
                    end_offset=span_end,
                    text=body,
                    content_hash=content_hash(body),
                    start_line=bisect.bisect_right(line_starts, span_start),
                    end_line=bisect.bisect_right(line_starts, span_end - 1),
                )
                index += 1
            if end >= length:
                break
            start = self._next_start(text, start, end)

    def _next_start(self, text: str, start: int, end: int) -> int:
        overlap = self.config.overlap
        if overlap == 0:
            return end
        candidate = max(end - overlap, start + 1)
        # Align to the start of a word so overlap never begins mid-token
        match = WHITESPACE_RE.search(text, candidate, end)
        if match is None:
            return end
        return match.end()

    def _find_break(
        self,
        text: str,
        start: int,
        size: int,
        fences: List[Tuple[int, int]],
        fence_starts: List[int],
    ) -> int:
        hard_end = min(len(text), start + size)
        if hard_end == len(text):
            return hard_end

        # Keep a fence whole by cutting right before it if it fits in the next chunk
        pos = bisect.bisect_right(fence_starts, start)
        while pos < len(fences) and fences[pos][0] < hard_end:
            fence_start, fence_end = fences[pos]
            if fence_end > hard_end and fence_end - fence_start <= size:
                return fence_start
            pos += 1

        floor = start + max(1, int(size * MIN_FILL_RATIO))
        for respect_fences in (True, False):
            for pattern in BREAK_PATTERNS:
                cut = _last_cut(pattern, text, floor, hard_end, fences if respect_fences else ())
                if cut is not None:
                    return cut
        return hard_end


def _last_cut(
    pattern: re.Pattern[str],
    text: str,
    floor: int,
    hard_end: int,
    fences: Sequence[Tuple[int, int]],
) -> int | None:
    cut = None
    for match in pattern.finditer(text, floor, hard_end):
        candidate = match.end()
        if candidate > hard_end or _inside_fence(candidate, fences):
            continue
        cut = candidate
    return cut


def _inside_fence(position: int, fences: Sequence[Tuple[int, int]]) -> bool:
    for fence_start, fence_end in fences:
        if fence_start < position < fence_end:
            return True
        if fence_start >= position:
            break
    return False


def _trim(text: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def chunk_document(document_path: str, text: str, *, chunk_size: int = 1000, overlap: int = 0) -> List[Chunk]:
    """Convenience wrapper returning a materialized list."""
    chunker = MarkdownChunker(ChunkingConfig(chunk_size=chunk_size, overlap=overlap))
    chunks = list(chunker.chunk(document_path, text))
    LOGGER.debug("Chunked %s into %d chunks", document_path, len(chunks))
    return chunks
