import re
import sqlite3
import logging
import asyncio
from contextlib import closing
from typing import Optional, Dict, Any, List, Tuple

import config
from config import INT64_MIN, INT64_MAX, SEQUENCE_NAME_PATTERN

# --- Environment Setup ---

logger = logging.getLogger(f"permuteseq.{__name__}")

# --- Constants & Globals ---

DB_FILE = config.DB_FILE

class ResourceNotFoundException(Exception):
    """Custom exception for resource not found errors."""
    pass

class SequenceExhausted(RuntimeError):
    """A non-cycling sequence has reached its bound."""
    pass

# --- Database Connection ---

def get_db_connection():
    """Returns a connection to the SQLite database."""
    conn = sqlite3.connect(DB_FILE, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn

def init_db():
    """Initializes the database and creates the 'sequences' table if it doesn't exist."""
    with get_db_connection() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sequences (
                name TEXT PRIMARY KEY,
                min_value INTEGER NOT NULL,
                max_value INTEGER NOT NULL,
                increment INTEGER NOT NULL DEFAULT 1,
                start_value INTEGER NOT NULL,
                last_value INTEGER NOT NULL,
                is_called INTEGER NOT NULL DEFAULT 0,
                cycle INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.commit()
    logger.info(f"Database initialized successfully ({DB_FILE}).")

# --- Validation Helpers ---

def _validate_name(name: str) -> None:
    if not name or not re.match(SEQUENCE_NAME_PATTERN, name):
        raise ValueError(f"Invalid sequence name: {name!r}")

def _validate_definition(min_value: int, max_value: int, start: int, increment: int) -> None:
    for label, n in (("min_value", min_value), ("max_value", max_value), ("increment", increment)):
        if not INT64_MIN <= n <= INT64_MAX:
            raise ValueError(f"{label} must fit in a signed 64-bit integer")
    if increment == 0:
        raise ValueError("increment must not be zero")
    if min_value >= max_value:
        raise ValueError(f"min_value ({min_value}) must be less than max_value ({max_value})")
    if not min_value <= start <= max_value:
        raise ValueError(f"start value {start} is outside of [{min_value},{max_value}]")

def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    seq = dict(row)
    seq["is_called"] = bool(seq["is_called"])
    seq["cycle"] = bool(seq["cycle"])
    return seq

def _fetch_sequence(cursor: sqlite3.Cursor, name: str) -> sqlite3.Row:
    cursor.execute("SELECT * FROM sequences WHERE name = ?", (name,))
    row = cursor.fetchone()
    if not row:
        raise ResourceNotFoundException(f"Sequence '{name}' not found.")
    return row

def _advance(row: sqlite3.Row) -> int:
    """Computes the value nextval() returns for a sequence in the given state."""
    if not row["is_called"]:
        return row["last_value"]

    last, inc = row["last_value"], row["increment"]
    lo, hi = row["min_value"], row["max_value"]
    # Compare before adding so that last + inc never leaves the 64-bit domain
    if inc > 0 and last > hi - inc:
        if not row["cycle"]:
            raise SequenceExhausted(f"nextval: reached maximum value of sequence '{row['name']}' ({hi})")
        return lo
    if inc < 0 and last < lo - inc:
        if not row["cycle"]:
            raise SequenceExhausted(f"nextval: reached minimum value of sequence '{row['name']}' ({lo})")
        return hi
    return last + inc

# --- Public Database Operations ---

async def create_sequence(
    name: str,
    min_value: int = 1,
    max_value: int = INT64_MAX,
    start: Optional[int] = None,
    increment: int = 1,
    cycle: bool = False
) -> Dict[str, Any]:
    """
    Creates a new sequence. When no start value is given, ascending sequences
    start at min_value and descending ones at max_value.

    Raises: ValueError if the definition is invalid or the name is already in use.
    """
    _validate_name(name)
    if start is None:
        start = min_value if increment > 0 else max_value
    _validate_definition(min_value, max_value, start, increment)

    loop = asyncio.get_running_loop()
    def db_insert():
        with get_db_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO sequences (name, min_value, max_value, increment, start_value, last_value, is_called, cycle)
                    VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                    """,
                    (name, min_value, max_value, increment, start, start, int(cycle))
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Sequence '{name}' already exists.") from e
            conn.commit()
            return _row_to_dict(_fetch_sequence(cursor, name))
    seq = await loop.run_in_executor(None, db_insert)
    logger.info(f"Created sequence '{name}' over [{min_value},{max_value}] (increment {increment}, cycle={cycle})")
    return seq

async def get_sequence(name: str) -> Optional[Dict[str, Any]]:
    loop = asyncio.get_running_loop()
    def db_fetch():
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM sequences WHERE name = ?", (name,))
            row = cursor.fetchone()
            return _row_to_dict(row) if row else None
    return await loop.run_in_executor(None, db_fetch)

async def get_sequence_range(name: str) -> Tuple[int, int]:
    """Returns the (min_value, max_value) bounds of a sequence."""
    seq = await get_sequence(name)
    if not seq:
        raise ResourceNotFoundException(f"Sequence '{name}' not found.")
    return seq["min_value"], seq["max_value"]

async def list_sequences() -> List[Dict[str, Any]]:
    loop = asyncio.get_running_loop()
    def db_fetch_all():
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM sequences ORDER BY name")
            return [_row_to_dict(row) for row in cursor.fetchall()]
    return await loop.run_in_executor(None, db_fetch_all)

async def nextval(name: str) -> int:
    """
    Atomically advances a sequence and returns its new value.
    The write lock is taken before reading so concurrent callers never share a value.
    """
    loop = asyncio.get_running_loop()
    def db_nextval():
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            row = _fetch_sequence(cursor, name)
            value = _advance(row)
            cursor.execute(
                "UPDATE sequences SET last_value = ?, is_called = 1 WHERE name = ?",
                (value, name)
            )
            conn.commit()
            return value
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
    return await loop.run_in_executor(None, db_nextval)

async def setval(name: str, value: int, is_called: bool = True) -> int:
    """
    Sets the current value of a sequence. With is_called=False the next call
    to nextval() returns `value` itself rather than the value after it.
    """
    loop = asyncio.get_running_loop()
    def db_setval():
        with get_db_connection() as conn:
            cursor = conn.cursor()
            row = _fetch_sequence(cursor, name)
            if not row["min_value"] <= value <= row["max_value"]:
                raise ValueError(
                    f"setval: value {value} is out of bounds for sequence '{name}' "
                    f"({row['min_value']}..{row['max_value']})"
                )
            cursor.execute(
                "UPDATE sequences SET last_value = ?, is_called = ? WHERE name = ?",
                (value, int(is_called), name)
            )
            conn.commit()
            return value
    return await loop.run_in_executor(None, db_setval)

async def drop_sequence(name: str) -> None:
    loop = asyncio.get_running_loop()
    def db_delete():
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM sequences WHERE name = ?", (name,))
            if cursor.rowcount == 0:
                raise ResourceNotFoundException(f"Sequence '{name}' not found.")
            conn.commit()
    await loop.run_in_executor(None, db_delete)
    logger.info(f"Dropped sequence '{name}'")

async def count_sequences() -> int:
    """Counts stored sequences. Also used by the health check."""
    loop = asyncio.get_running_loop()
    def db_count():
        with closing(get_db_connection()) as conn:
            return conn.execute("SELECT COUNT(*) FROM sequences").fetchone()[0]
    return await loop.run_in_executor(None, db_count)
