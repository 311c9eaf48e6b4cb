"""
Tests for TableChunker: header repetition, row-boundary splits and summaries.
"""

import pytest

from recall.vector.tables import TableChunker, detect_delimiter

PEOPLE_CSV = "name,age,city\nAlice,30,Paris\nBob,25,Berlin\n"


def grid_lines(text):
    return [line for line in text.splitlines() if line.startswith("| ")]


def test_small_table_single_chunk():
    """Test that a small CSV becomes one chunk with meta, grid and summary."""
    chunks = TableChunker().chunk_csv(PEOPLE_CSV, "people.csv")

    assert len(chunks) == 1
    text = chunks[0].text
    assert text.startswith("Table: people.csv")
    assert "Rows 1-2 of 2" in text
    assert "3 columns" in text
    assert "| name " in text
    assert "| Alice" in text
    assert "- age: range 25 to 30, mean 27.5" in text
    assert "- city: Paris, Berlin" in text


def test_large_table_repeats_header_and_splits_on_rows():
    """Test that every chunk has the header and rows are never split or duplicated."""
    rows = [["id", "value"]] + [[str(i), f"v{i}"] for i in range(120)]
    chunks = TableChunker(max_rows_per_chunk=50).chunk_rows(rows, "big.csv")

    assert len(chunks) == 3
    data_lines = []
    for chunk in chunks:
        lines = grid_lines(chunk.text)
        assert lines[0].startswith("| id ")
        data_lines.extend(lines[1:])

    assert [len(grid_lines(c.text)) - 1 for c in chunks] == [50, 50, 20]
    assert len(data_lines) == 120
    assert len(set(data_lines)) == 120
    assert "Rows 101-120 of 120" in chunks[2].text


def test_short_rows_padded():
    """Test that a short row is padded to the header width."""
    chunks = TableChunker().chunk_csv("a,b,c\n1\n", "short.csv")

    data_line = grid_lines(chunks[0].text)[1]
    assert data_line.count("|") == 4


def test_categorical_column_over_cap():
    """Test that a column with many distinct values reports its cardinality."""
    rows = [["color"]] + [[f"c{i}"] for i in range(12)]
    text = TableChunker(category_cap=10).chunk_rows(rows, "colors.csv")[0].text

    assert "- color: 12 distinct values" in text


def test_max_chars_splits_further():
    """Test that max_chars forces row-boundary splits below the row cap."""
    rows = [["id", "note"]] + [[str(i), "x" * 40] for i in range(10)]
    chunker = TableChunker(max_rows_per_chunk=50, max_chars=300)
    chunks = chunker.chunk_rows(rows, "notes.csv")

    assert len(chunks) > 1
    total_rows = sum(len(grid_lines(c.text)) - 1 for c in chunks)
    assert total_rows == 10


def test_cell_escaping():
    """Test that pipes and newlines inside cells are escaped."""
    rows = [["k", "v"], ["a|b", "line1\nline2"]]
    text = TableChunker().chunk_rows(rows, "t.csv")[0].text

    assert "a\\|b" in text
    assert "line1 line2" in text


def test_sheet_name_in_meta():
    """Test that the sheet name appears in the meta line."""
    text = TableChunker().chunk_rows([["h"], ["1"]], "book.xlsx", sheet_name="Q1")[0].text
    assert "Sheet: Q1" in text.splitlines()[0]


def test_empty_table():
    """Test that no rows produce no chunks."""
    assert TableChunker().chunk_rows([], "empty.csv") == []


@pytest.mark.parametrize("text,expected", [
    ("a,b,c\n1,2,3", ","),
    ("a;b;c\n1;2;3", ";"),
    ("a\tb\tc\n1\t2\t3", "\t"),
    ("a|b|c\n1|2|3", "|"),
    ("single\nvalue", ","),
])
def test_detect_delimiter(text, expected):
    """Test delimiter sniffing from the first line."""
    assert detect_delimiter(text) == expected
