"""FTS5 full-text search over indexed file paths and names.

Provides:
- search_fts(): Search the shadow index with BM25 ranking
- sanitize_fts_query(): Quote user input for safe FTS5 use

The shadow index uses the trigram tokenizer, so every term is matched as
a case-insensitive substring of the path or name. Trigram matching needs
at least 3 characters per term; shorter queries fall back to LIKE.

Query syntax supported:
- Simple terms: "tax 2023" (all terms must match)
- Phrases: '"quarterly report"'
- Boolean: "invoice OR receipt"
"""

from __future__ import annotations

import logging
import sqlite3

from .disk import FileRecord
from .schema import FILE_COLUMNS

logger = logging.getLogger(__name__)

# FTS5 boolean operators that should be passed through
_FTS5_OPERATORS = {"OR", "AND", "NOT"}

# Trigram tokenizer cannot match shorter substrings
MIN_TRIGRAM_LENGTH = 3

# BM25 column weights: (path, name). A hit in the name counts double.
_BM25_WEIGHTS = "1.0, 2.0"


def _tokenize_fts_query(query: str) -> list[str]:
    """Split query into phrase blocks and bare tokens.

    Balanced double-quoted segments are kept intact (including quotes).
    Unbalanced quotes are dropped.

    Returns:
        List of tokens: quoted phrases and individual bare words.
    """
    tokens: list[str] = []
    i = 0
    n = len(query)

    while i < n:
        if query[i].isspace():
            i += 1
            continue

        if query[i] == '"':
            end = query.find('"', i + 1)
            if end != -1:
                # Balanced phrase, kept as-is
                tokens.append(query[i : end + 1])
                i = end + 1
            else:
                # Unbalanced quote, skipped
                i += 1
        else:
            # Bare token: collect until whitespace or quote
            start = i
            while i < n and not query[i].isspace() and query[i] != '"':
                i += 1
            tokens.append(query[start:i])

    return tokens


def _quote(text: str) -> str:
    """Wrap text in double quotes, FTS5's only escaping mechanism."""
    return '"' + text.replace('"', '""') + '"'


def _sanitize_bare_token(token: str) -> str:
    """Sanitize a single bare FTS5 token.

    File names are full of characters FTS5 treats as syntax (dots,
    hyphens, parentheses), so every bare token is quoted. Boolean
    operators are passed through.
    """
    if token in _FTS5_OPERATORS:
        return token
    return _quote(token)


def _escape_all_special(query: str) -> str:
    """Aggressively quote ALL tokens as last-resort fallback.

    Used when the first search attempt raises a syntax error (for
    example a dangling "OR"). Operators are quoted too, so they are
    searched for literally.
    """
    return " ".join(_quote(word) for word in query.split())


def _search_terms(query: str) -> list[str]:
    """Return the literal search terms of a query (quotes and operators removed)."""
    terms = []
    for token in _tokenize_fts_query(query.strip()):
        if token in _FTS5_OPERATORS:
            continue
        if token.startswith('"') and token.endswith('"') and len(token) > 1:
            token = token[1:-1]
        if token:
            terms.append(token)
    return terms


def sanitize_fts_query(query: str) -> str:
    """Sanitize a query string for safe FTS5 use.

    Preserves:
    - Balanced double-quoted phrases: ``"exact phrase"``
    - Boolean operators: ``OR``, ``AND``, ``NOT``

    Quotes:
    - Every other token, so ``report.pdf`` or ``draft-v2`` match literally

    Args:
        query: Raw user query

    Returns:
        Sanitized query safe for FTS5
    """
    if not query or not query.strip():
        return ""

    sanitized_parts: list[str] = []
    for token in _tokenize_fts_query(query.strip()):
        if len(token) > 1 and token.startswith('"') and token.endswith('"'):
            # Already a balanced phrase
            sanitized_parts.append(token)
        else:
            sanitized_parts.append(_sanitize_bare_token(token))

    return " ".join(sanitized_parts)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _like_groups(query: str) -> list[list[tuple[str, bool]]]:
    """Parse a query into OR-separated groups of (term, negated) pairs.

    FTS5 precedence is kept: NOT binds to the next term, terms within a
    group are ANDed, and groups are ORed.
    """
    groups: list[list[tuple[str, bool]]] = [[]]
    negate = False
    for token in _tokenize_fts_query(query.strip()):
        if token == "OR":
            groups.append([])
            negate = False
            continue
        if token == "NOT":
            negate = True
            continue
        if token == "AND":
            continue
        if token.startswith('"') and token.endswith('"') and len(token) > 1:
            token = token[1:-1]
        if token:
            groups[-1].append((token, negate))
        negate = False
    return [group for group in groups if group]


def _search_like(
    conn: sqlite3.Connection, query: str, limit: int
) -> list[FileRecord]:
    """Substring search for terms too short for the trigram index.

    Each term must appear in the path or the name; OR and NOT behave as
    they do in FTS5.
    """
    match = "(name LIKE ? ESCAPE '\\' OR path LIKE ? ESCAPE '\\')"
    clauses: list[str] = []
    params: list = []
    for group in _like_groups(query):
        parts = []
        for term, negated in group:
            parts.append(f"NOT {match}" if negated else match)
            pattern = f"%{_escape_like(term)}%"
            params.extend([pattern, pattern])
        clauses.append("(" + " AND ".join(parts) + ")")
    if not clauses:
        return []

    sql = (
        f"SELECT {FILE_COLUMNS} FROM files WHERE {' OR '.join(clauses)} "
        "ORDER BY modified_at DESC LIMIT ?"
    )
    params.append(limit)

    return [FileRecord.from_row(row) for row in conn.execute(sql, params)]


def search_fts(
    conn: sqlite3.Connection,
    query: str,
    limit: int = 50,
    *,
    _is_retry: bool = False,
) -> list[FileRecord]:
    """
    Search indexed files by path and name with BM25 ranking.

    Args:
        conn: Database connection
        query: Search query
        limit: Maximum results (default: 50)

    Returns:
        List of FileRecord ordered by relevance; empty if nothing matches
    """
    if not query or not query.strip():
        return []

    terms = _search_terms(query)
    if not terms:
        return []
    # FTS5 rejects a group made only of NOT terms, so LIKE handles those too
    negated_only = any(
        all(negated for _, negated in group) for group in _like_groups(query)
    )
    if negated_only or any(len(t) < MIN_TRIGRAM_LENGTH for t in terms):
        return _search_like(conn, query, limit)

    # Sanitize query for FTS5 (skip on retry to avoid double-escaping)
    safe_query = query if _is_retry else sanitize_fts_query(query)

    if not safe_query:
        return []

    # BM25 returns negative scores (more negative = better match)
    columns = ", ".join(f"f.{c.strip()}" for c in FILE_COLUMNS.split(","))
    sql = f"""
        SELECT {columns}
        FROM files_fts
        JOIN files f ON files_fts.rowid = f.id
        WHERE files_fts MATCH ?
        ORDER BY bm25(files_fts, {_BM25_WEIGHTS})
        LIMIT ?
    """

    try:
        cursor = conn.execute(sql, (safe_query, limit))
        return [FileRecord.from_row(row) for row in cursor]

    except sqlite3.OperationalError as e:
        # FTS5 syntax error: retry with every term quoted
        if "fts5: syntax error" in str(e).lower() and not _is_retry:
            logger.debug("FTS syntax error for %r, retrying escaped", query)
            return search_fts(
                conn,
                _escape_all_special(query),
                limit=limit,
                _is_retry=True,
            )
        raise
