import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool
from schemas import Source

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

SOURCE_TABLES: Dict[Source, str] = {
    Source.PRIOR: "previous_performance",
    Source.FALL: "fall_performance",
    Source.SPRING: "spring_matrix",
}

# Columns each source set owns (besides the key and updated_at).
SOURCE_COLUMNS: Dict[Source, Tuple[str, ...]] = {
    Source.PRIOR: ("first_name", "last_name", "score", "subject"),
    Source.FALL: ("first_name", "last_name", "score", "subject"),
    Source.SPRING: (
        "first_name",
        "last_name",
        "grade",
        "campus",
        "teacher",
        "prior_score",
        "spring_score",
        "subject",
    ),
}

# Scan order when looking up names for an identifier.
NAME_LOOKUP_ORDER: Tuple[Source, ...] = (Source.SPRING, Source.FALL, Source.PRIOR)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def transaction():
    """Return a context manager wrapping one atomic write transaction."""
    return _pool.transaction()


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def close():
    """Close every pooled connection; later calls open fresh ones."""
    _pool.close_all()


# -------------- schema --------------
def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS previous_performance (
              local_id    TEXT PRIMARY KEY,
              first_name  TEXT,
              last_name   TEXT,
              score       REAL,
              subject     TEXT,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS fall_performance (
              local_id    TEXT PRIMARY KEY,
              first_name  TEXT,
              last_name   TEXT,
              score       REAL,
              subject     TEXT,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS spring_matrix (
              local_id      TEXT PRIMARY KEY,
              first_name    TEXT,
              last_name     TEXT,
              grade         TEXT,
              campus        TEXT,
              teacher       TEXT,
              prior_score   REAL,
              spring_score  REAL,
              subject       TEXT,
              updated_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_spring_matrix_teacher ON spring_matrix(teacher);
            CREATE INDEX IF NOT EXISTS idx_spring_matrix_grade ON spring_matrix(grade);
            """
        )
        con.commit()


# -------------- source sets --------------
def _row_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


def _select_columns(source: Source) -> str:
    return ", ".join(("local_id",) + SOURCE_COLUMNS[source])


def get_source_row(
    con: sqlite3.Connection, source: Source, identifier: str
) -> Optional[Dict[str, Any]]:
    row = con.execute(
        f"SELECT {_select_columns(source)} FROM {SOURCE_TABLES[source]} WHERE local_id = ?",
        (identifier,),
    ).fetchone()
    return _row_dict(row)


def write_source_row(con: sqlite3.Connection, source: Source, row: Mapping[str, Any]) -> None:
    """Insert or fully replace the owned columns of one source row.

    ``row`` is the already merged record; columns missing from it are stored
    as NULL.
    """
    columns = SOURCE_COLUMNS[source]
    placeholders = ", ".join("?" for _ in range(len(columns) + 1))
    assignments = ",\n              ".join(f"{col}=excluded.{col}" for col in columns)
    con.execute(
        f"""
        INSERT INTO {SOURCE_TABLES[source]} (local_id, {", ".join(columns)})
        VALUES ({placeholders})
        ON CONFLICT(local_id) DO UPDATE SET
              {assignments},
              updated_at=CURRENT_TIMESTAMP
        """,
        [row["local_id"], *(row.get(col) for col in columns)],
    )


def delete_source_rows(con: sqlite3.Connection, identifier: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for source in NAME_LOOKUP_ORDER:
        table = SOURCE_TABLES[source]
        cur = con.execute(f"DELETE FROM {table} WHERE local_id = ?", (identifier,))
        counts[table] = cur.rowcount if cur is not None else 0
    return counts


def clear_source_sets() -> Dict[str, int]:
    counts: Dict[str, int] = {}
    with transaction() as con:
        for source in NAME_LOOKUP_ORDER:
            table = SOURCE_TABLES[source]
            cur = con.execute(f"DELETE FROM {table}")
            counts[table] = cur.rowcount if cur is not None else 0
    return counts


def find_names(con: sqlite3.Connection, identifier: str) -> Tuple[Optional[str], Optional[str]]:
    """Return the first non-null first/last name across spring, fall, prior."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    for source in NAME_LOOKUP_ORDER:
        row = con.execute(
            f"SELECT first_name, last_name FROM {SOURCE_TABLES[source]} WHERE local_id = ?",
            (identifier,),
        ).fetchone()
        if row is None:
            continue
        first_name = first_name or row["first_name"]
        last_name = last_name or row["last_name"]
        if first_name and last_name:
            break
    return first_name, last_name


def canonical_rows(con: sqlite3.Connection) -> List[Dict[str, Any]]:
    """Identifier and name rows of every source set, in name-lookup order."""
    rows: List[Dict[str, Any]] = []
    for source in NAME_LOOKUP_ORDER:
        cur = con.execute(
            f"SELECT local_id, first_name, last_name FROM {SOURCE_TABLES[source]} ORDER BY local_id"
        )
        rows.extend(_row_dict(row) for row in cur.fetchall())
    return rows


def fetch_source_rows(
    con: Optional[sqlite3.Connection] = None,
) -> Dict[Source, List[Dict[str, Any]]]:
    """Read a snapshot of all three source sets."""
    if con is None:
        with _conn() as pooled:
            return fetch_source_rows(pooled)
    snapshot: Dict[Source, List[Dict[str, Any]]] = {}
    for source, table in SOURCE_TABLES.items():
        cur = con.execute(f"SELECT {_select_columns(source)} FROM {table} ORDER BY local_id")
        snapshot[source] = [_row_dict(row) for row in cur.fetchall()]
    return snapshot


def list_source_rows(source: Source) -> List[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_select_columns(source)}, updated_at FROM {SOURCE_TABLES[source]} "
        "ORDER BY last_name, first_name, local_id"
    )
    return [_row_dict(row) for row in rows]


def list_teachers(grade: Optional[str] = None) -> List[str]:
    clauses = ["teacher IS NOT NULL", "TRIM(teacher) != ''"]
    params: List[Any] = []
    if grade:
        clauses.append("grade = ?")
        params.append(grade)
    rows = _query(
        f"SELECT DISTINCT teacher FROM spring_matrix WHERE {' AND '.join(clauses)} ORDER BY teacher",
        params,
    )
    return [row["teacher"] for row in rows]


def list_grades() -> List[str]:
    rows = _query(
        "SELECT DISTINCT grade FROM spring_matrix WHERE grade IS NOT NULL ORDER BY grade"
    )
    return [row["grade"] for row in rows]


def count_rows(sources: Sequence[Source] = NAME_LOOKUP_ORDER) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for source in sources:
        table = SOURCE_TABLES[source]
        counts[table] = _query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]
    return counts
