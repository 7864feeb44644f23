"""Tests for the markdown chunker."""

from __future__ import annotations

import pytest

from vaultrag.ingestion.chunker import ChunkingConfig, MarkdownChunker, chunk_document, find_fences
from vaultrag.utils.text import content_hash

NOTE = """# Project plan

The project starts in spring. We need a budget and a team.
Everyone agrees the timeline is tight.

## Milestones

First milestone is the prototype. Second milestone is the beta release.
Third milestone is general availability, which depends on the beta.

## Risks

Hiring may slip. Suppliers may be late. The weather may not cooperate.
"""


class TestChunkingConfig:
    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            ChunkingConfig(chunk_size=0)

    def test_rejects_overlap_not_smaller_than_size(self) -> None:
        with pytest.raises(ValueError):
            ChunkingConfig(chunk_size=10, overlap=10)
        with pytest.raises(ValueError):
            ChunkingConfig(chunk_size=10, overlap=-1)


class TestMarkdownChunker:
    """Test chunk boundaries and metadata."""

    def test_empty_text_yields_nothing(self) -> None:
        assert chunk_document("a.md", "") == []
        assert chunk_document("a.md", "  \n\n\t") == []

    def test_short_text_is_one_chunk(self) -> None:
        chunks = chunk_document("a.md", "  hello world \n")
        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.text == "hello world"
        assert chunk.id == "a.md#0"
        assert chunk.document_path == "a.md"
        assert (chunk.start_offset, chunk.end_offset) == (2, 13)
        assert chunk.content_hash == content_hash("hello world")

    def test_chunking_is_deterministic(self) -> None:
        first = chunk_document("plan.md", NOTE, chunk_size=120)
        second = chunk_document("plan.md", NOTE, chunk_size=120)
        assert first == second

    def test_chunks_respect_size_and_map_back_to_source(self) -> None:
        chunks = chunk_document("plan.md", NOTE, chunk_size=120)
        assert len(chunks) > 1
        for index, chunk in enumerate(chunks):
            assert chunk.id == f"plan.md#{index}"
            assert 0 < len(chunk.text) <= 120
            assert NOTE[chunk.start_offset : chunk.end_offset] == chunk.text

    def test_chunks_are_ordered_without_overlap(self) -> None:
        chunks = chunk_document("plan.md", NOTE, chunk_size=120)
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.end_offset <= current.start_offset

    def test_prefers_heading_boundaries(self) -> None:
        chunks = chunk_document("plan.md", NOTE, chunk_size=200)
        assert any(chunk.text.startswith("## Milestones") for chunk in chunks)
        assert any(chunk.text.startswith("## Risks") for chunk in chunks)

    def test_line_numbers_are_one_based(self) -> None:
        chunks = chunk_document("plan.md", NOTE, chunk_size=200)
        assert chunks[0].start_line == 1
        for chunk in chunks:
            first_line = NOTE.count("\n", 0, chunk.start_offset) + 1
            last_line = NOTE.count("\n", 0, chunk.end_offset - 1) + 1
            assert (chunk.start_line, chunk.end_line) == (first_line, last_line)

    def test_hard_cut_without_whitespace(self) -> None:
        chunks = chunk_document("blob.md", "x" * 25, chunk_size=10)
        assert [len(chunk.text) for chunk in chunks] == [10, 10, 5]

    def test_fenced_code_block_kept_whole(self) -> None:
        code = "```python\n" + "".join(f"value_{i} = {i}\n" for i in range(6)) + "```\n"
        text = "Intro paragraph that explains the snippet.\n\n" + code + "\nClosing words."
        chunks = chunk_document("code.md", text, chunk_size=len(code) + 10)

        fence_start = text.index("```")
        fence_end = text.index("```\n", fence_start + 3) + 3
        holders = [c for c in chunks if c.start_offset <= fence_start and c.end_offset >= fence_end]
        assert len(holders) == 1

    def test_find_fences_handles_unterminated_block(self) -> None:
        text = "before\n```\ncode\n```\nafter\n~~~\nopen"
        spans = find_fences(text)
        assert spans[0] == (7, 20)
        assert spans[1] == (26, len(text))

    def test_longer_fence_is_not_closed_by_shorter_run(self) -> None:
        text = "````md\n```\ninner\n```\n````\nafter"
        assert find_fences(text) == [(0, 26)]

    def test_fences_may_be_indented_up_to_three_spaces(self) -> None:
        assert find_fences("intro\n  ```\ncode\n  ```\nafter") == [(6, 23)]
        assert find_fences("    ```\ncode") == []

    def test_overlap_is_bounded(self) -> None:
        words = " ".join(f"word{i}" for i in range(80))
        chunks = chunk_document("w.md", words, chunk_size=60, overlap=15)
        assert len(chunks) > 1
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_offset > previous.start_offset
            assert previous.end_offset - current.start_offset <= 15
            # Overlap starts on a word boundary
            assert words[current.start_offset - 1] == " "

    def test_chunker_is_reusable(self) -> None:
        chunker = MarkdownChunker(ChunkingConfig(chunk_size=80))
        assert list(chunker.chunk("a.md", NOTE)) == list(chunker.chunk("a.md", NOTE))
