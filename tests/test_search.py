"""Tests for FTS5 search functionality."""

from __future__ import annotations

import sqlite3

from aurora_mcp.index.schema import UPSERT_FILE_SQL, file_to_row
from aurora_mcp.index.search import (
    _escape_all_special,
    _search_terms,
    sanitize_fts_query,
    search_fts,
)


def _names(results) -> list[str]:
    return [r.name for r in results]


class TestSanitizeFtsQuery:
    """Tests for FTS5 query sanitization."""

    def test_empty_query(self):
        assert sanitize_fts_query("") == ""
        assert sanitize_fts_query("   ") == ""

    def test_simple_query(self):
        assert sanitize_fts_query("hello world") == '"hello" "world"'

    def test_quotes_file_name_characters(self):
        # Dots, hyphens, colons and parentheses are FTS5 syntax
        assert sanitize_fts_query("report.pdf") == '"report.pdf"'
        assert sanitize_fts_query("draft-v2") == '"draft-v2"'
        assert sanitize_fts_query("col:value") == '"col:value"'
        assert sanitize_fts_query("(group)") == '"(group)"'
        assert sanitize_fts_query("it's") == '"it\'s"'

    def test_preserves_phrase_search(self):
        """Balanced double quotes are kept for phrase search."""
        assert sanitize_fts_query('"exact phrase"') == '"exact phrase"'

        result = sanitize_fts_query('hello "exact phrase" world')
        assert result == '"hello" "exact phrase" "world"'

    def test_drops_unbalanced_quotes(self):
        assert sanitize_fts_query('test" OR hello') == '"test" OR "hello"'

    def test_preserves_boolean_operators(self):
        assert sanitize_fts_query("a OR b") == '"a" OR "b"'
        assert sanitize_fts_query("a AND b") == '"a" AND "b"'
        assert sanitize_fts_query("a NOT b") == '"a" NOT "b"'

    def test_lowercase_operators_are_terms(self):
        assert sanitize_fts_query("this or that") == '"this" "or" "that"'

    def test_strips_whitespace(self):
        assert sanitize_fts_query("  hello  ") == '"hello"'


class TestEscapeAllSpecial:
    """Tests for aggressive last-resort quoting."""

    def test_quotes_every_term(self):
        assert _escape_all_special("test meet") == '"test" "meet"'

    def test_quotes_operators_too(self):
        assert _escape_all_special("hello OR") == '"hello" "OR"'


class TestSearchTerms:
    def test_strips_quotes_and_operators(self):
        assert _search_terms('"summer mix" OR q3') == ["summer mix", "q3"]

    def test_empty(self):
        assert _search_terms("  ") == []


class TestSearchFts:
    """Tests for FTS5 search function."""

    def test_empty_query_returns_empty(self, populated_db: sqlite3.Connection):
        assert search_fts(populated_db, "") == []
        assert search_fts(populated_db, "   ") == []

    def test_basic_search(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "report")
        assert _names(results) == ["Q3_report.pdf"]

        result = results[0]
        assert result.id is not None
        assert result.path == "/home/me/Documents/Q3_report.pdf"

    def test_substring_match(self, populated_db: sqlite3.Connection):
        """Terms match anywhere inside a name, not only whole words."""
        assert _names(search_fts(populated_db, "port")) == ["Q3_report.pdf"]

    def test_case_insensitive(self, populated_db: sqlite3.Connection):
        assert _names(search_fts(populated_db, "NOTES")) == ["notes.md"]

    def test_matches_directory_part_of_path(
        self, populated_db: sqlite3.Connection
    ):
        results = search_fts(populated_db, "documents")
        assert sorted(_names(results)) == ["Q3_report.pdf", "notes.md"]

    def test_all_terms_must_match(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "documents report")
        assert _names(results) == ["Q3_report.pdf"]

    def test_phrase_with_space(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, '"summer mix"')
        assert _names(results) == ["summer mix.mp3"]

    def test_or_operator(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "report OR notes")
        assert sorted(_names(results)) == ["Q3_report.pdf", "notes.md"]

    def test_hyphenated_name(self, populated_db: sqlite3.Connection):
        assert _names(search_fts(populated_db, "draft-v2")) == ["draft-v2.txt"]

    def test_search_respects_limit(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "home", limit=2)
        assert len(results) == 2

    def test_name_hits_rank_first(
        self, temp_db: sqlite3.Connection, record_factory
    ):
        for record in (
            record_factory("/archive/budget/readme.txt"),
            record_factory("/x/budget.xlsx"),
        ):
            temp_db.execute(UPSERT_FILE_SQL, file_to_row(record))
        temp_db.commit()

        results = search_fts(temp_db, "budget")
        assert _names(results)[0] == "budget.xlsx"
        assert len(results) == 2

    def test_search_handles_malformed_queries(
        self, populated_db: sqlite3.Connection
    ):
        """Malformed queries return a list instead of raising."""
        for query in ["report OR", "AND", "(broken", "hello:", 'a"b']:
            results = search_fts(populated_db, query)
            assert isinstance(results, list)

    def test_search_no_results(self, populated_db: sqlite3.Connection):
        assert search_fts(populated_db, "xyznonexistent123") == []


class TestShortTerms:
    """Terms under three characters use LIKE instead of the trigram index."""

    def test_two_letter_term(self, populated_db: sqlite3.Connection):
        assert _names(search_fts(populated_db, "q3")) == ["Q3_report.pdf"]

    def test_short_term_combined_with_long(
        self, populated_db: sqlite3.Connection
    ):
        results = search_fts(populated_db, "mp summer")
        assert _names(results) == ["summer mix.mp3"]

    def test_like_wildcards_are_literal(self, populated_db: sqlite3.Connection):
        assert search_fts(populated_db, "%") == []
        results = search_fts(populated_db, "_")
        assert sorted(_names(results)) == ["IMG_0042.jpg", "Q3_report.pdf"]

    def test_short_term_no_match(self, populated_db: sqlite3.Connection):
        assert search_fts(populated_db, "zz") == []

    def test_not_excludes_short_term(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "NOT q3")
        assert len(results) == 4
        assert "Q3_report.pdf" not in _names(results)

    def test_or_with_short_terms(self, populated_db: sqlite3.Connection):
        results = search_fts(populated_db, "mp OR md")
        assert sorted(_names(results)) == ["notes.md", "summer mix.mp3"]

    def test_long_term_not_short_term(self, populated_db: sqlite3.Connection):
        assert _names(search_fts(populated_db, "report NOT ab")) == [
            "Q3_report.pdf"
        ]
        assert search_fts(populated_db, "draft NOT v2") == []

    def test_leading_not_with_long_term(
        self, populated_db: sqlite3.Connection
    ):
        results = search_fts(populated_db, "NOT report")
        assert len(results) == 4
        assert "Q3_report.pdf" not in _names(results)
