"""
Tests for DocumentChunker: bounds, ordering, overlap and termination.
"""

import pytest

from recall.vector.chunking import DocumentChunker

WORDS = ("alpha bravo charlie delta echo foxtrot golf hotel india juliet kilo lima mike "
         "november oscar papa quebec romeo sierra tango uniform victor whiskey xray yankee zulu").split()


def make_text(paragraphs=6, words_per_paragraph=40):
    paras = []
    for p in range(paragraphs):
        paras.append(" ".join(WORDS[(p + i) % len(WORDS)] for i in range(words_per_paragraph)))
    return "\n\n".join(paras)


def test_empty_text_yields_no_chunks():
    """Test that empty or whitespace text produces nothing."""
    chunker = DocumentChunker()
    assert chunker.chunk("") == []
    assert chunker.chunk("   \n\n  ") == []


def test_short_text_single_chunk():
    """Test that text under max_size is one chunk with no overlap."""
    chunks = DocumentChunker(max_size=512, overlap=50).chunk("Just one paragraph.", "doc")

    assert len(chunks) == 1
    assert chunks[0].text == "Just one paragraph."
    assert chunks[0].index == 0
    assert chunks[0].total_siblings == 1
    assert chunks[0].overlap_length == 0
    assert chunks[0].source_id == "doc"


def test_chunk_length_bounded():
    """Test that no chunk exceeds max_size + overlap and no body exceeds max_size."""
    chunker = DocumentChunker(max_size=120, overlap=30)
    chunks = chunker.chunk(make_text())

    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk.text) <= 120 + 30
        assert len(chunk.body) <= 120


def test_indices_contiguous_and_totals_match():
    """Test that indices run 0..n-1 and every chunk knows the sibling count."""
    chunks = DocumentChunker(max_size=100, overlap=20).chunk(make_text())

    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.total_siblings == len(chunks) for c in chunks)


def test_bodies_reconstruct_original_words():
    """Test that concatenated bodies hold every original word in order."""
    text = make_text(paragraphs=5, words_per_paragraph=37)
    chunks = DocumentChunker(max_size=90, overlap=25).chunk(text)

    rebuilt = " ".join(c.body for c in chunks).split()
    assert rebuilt == text.split()


def test_overlap_prefix_is_tail_of_previous_body():
    """Test that each prefix comes from the end of the previous chunk."""
    chunks = DocumentChunker(max_size=100, overlap=20).chunk(make_text())

    for previous, current in zip(chunks, chunks[1:]):
        assert 0 < current.overlap_length <= 20
        prefix = current.text[:current.overlap_length]
        assert prefix.endswith(" ")
        assert previous.body.endswith(prefix[:-1])


def test_paragraphs_packed_greedily():
    """Test that small paragraphs share a chunk until max_size would be exceeded."""
    text = "one two\n\nthree four\n\nfive six"
    chunks = DocumentChunker(max_size=100, overlap=0).chunk(text)

    assert len(chunks) == 1
    assert chunks[0].text == text


def test_oversized_token_hard_split():
    """Test that a single token longer than max_size is cut into max_size pieces."""
    chunks = DocumentChunker(max_size=10, overlap=0).chunk("x" * 25)

    assert [c.text for c in chunks] == ["x" * 10, "x" * 10, "x" * 5]


def test_terminates_when_overlap_exceeds_max_size():
    """Test forward progress when overlap >= max_size."""
    chunker = DocumentChunker(max_size=10, overlap=20)
    chunks = chunker.chunk("word " * 50)

    assert 0 < len(chunks) <= 50
    assert all(len(c.text) <= 30 for c in chunks)


def test_byte_length_counts_utf8():
    """Test that byte_length is the UTF-8 size of the chunk text."""
    chunks = DocumentChunker().chunk("机器学习很有趣")
    assert chunks[0].byte_length == len("机器学习很有趣".encode("utf-8"))


def test_invalid_parameters():
    """Test constructor validation."""
    with pytest.raises(ValueError):
        DocumentChunker(max_size=0)
    with pytest.raises(ValueError):
        DocumentChunker(overlap=-1)


class TestSentenceChunking:
    """Test sentence-aware chunking."""

    def test_breaks_after_sentence_punctuation(self):
        """Test that chunks end on sentence boundaries when they fit."""
        chunks = DocumentChunker(max_size=20, overlap=0).chunk_by_sentence(
            "First sentence. Second sentence! Third?")

        assert [c.text for c in chunks] == ["First sentence.", "Second sentence!", "Third?"]

    def test_chinese_punctuation(self):
        """Test splitting on full-width punctuation."""
        chunks = DocumentChunker(max_size=6, overlap=0).chunk_by_sentence("今天天气好。我们去公园！")

        assert [c.text for c in chunks] == ["今天天气好。", "我们去公园！"]

    def test_oversized_sentence_falls_back_to_tokens(self):
        """Test that a sentence longer than max_size is still bounded."""
        sentence = " ".join(WORDS) + "."
        chunks = DocumentChunker(max_size=40, overlap=0).chunk_by_sentence(sentence)

        assert len(chunks) > 1
        assert all(len(c.text) <= 40 for c in chunks)


class TestCodeChunking:
    """Test code-block aware chunking."""

    def test_code_block_kept_whole(self):
        """Test that fenced code is its own chunk with no overlap prefix."""
        text = "Intro paragraph.\n\n```python\nprint('hi')\n```\n\nOutro."
        chunks = DocumentChunker(max_size=512, overlap=10).chunk_by_code(text)

        assert [c.text for c in chunks] == ["Intro paragraph.", "```python\nprint('hi')\n```", "Outro."]
        assert all(c.overlap_length == 0 for c in chunks)


class TestWindowChunking:
    """Test the sliding-window splitter."""

    def test_short_text_single_window(self):
        """Test that short text is one window with whitespace collapsed."""
        chunks = DocumentChunker(max_size=100, overlap=10).chunk_window("a  b\n\nc")
        assert [c.text for c in chunks] == ["a b c"]

    def test_windows_bounded(self):
        """Test that every window is at most max_size."""
        text = make_text(paragraphs=4, words_per_paragraph=30)
        chunks = DocumentChunker(max_size=100, overlap=20).chunk_window(text)

        assert len(chunks) > 1
        assert all(len(c.text) <= 100 for c in chunks)

    def test_prefers_sentence_break(self):
        """Test that a window ends at a period past half its length."""
        text = ("a" * 70) + ". " + ("b" * 60)
        chunks = DocumentChunker(max_size=100, overlap=0).chunk_window(text)

        assert chunks[0].text.endswith(".")

    def test_terminates_when_overlap_exceeds_max_size(self):
        """Test that advance is clamped to at least one character."""
        chunks = DocumentChunker(max_size=10, overlap=50).chunk_window("z" * 30)

        assert 0 < len(chunks) <= 30
