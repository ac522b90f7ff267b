import sqlite3
import os
import hashlib
import logging
import time
from threading import Lock
from typing import Optional, List, Set, Union

from core.errors import DatabaseError
from core.models import KnownLabel, Label, Session, ThumbnailCacheEntry

logger = logging.getLogger(__name__)


def generate_session_id(folder_path: str) -> str:
    """First 128 bits of the SHA-256 of *folder_path*, hex encoded."""
    return hashlib.sha256(folder_path.encode("utf-8")).hexdigest()[:32]


class SessionDatabase:
    """
    Durable index of opened folders (sessions), per-file labels and
    thumbnail cache metadata.

    One connection is shared by every thread and guarded by a single lock.
    Each public operation is one statement (or one statement plus a read of
    the row it wrote) executed under that lock, so concurrent writers to the
    same key serialise cleanly: last writer wins, never a torn row.
    """

    def __init__(self, db_path: str):
        logger.info(f"Initializing SessionDatabase with path: {db_path}")
        self.db_path = db_path
        self._lock = Lock()

        # Ensure database directory exists
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        try:
            # check_same_thread=False: the lock, not the thread, owns the connection
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"cannot open {db_path}: {e}") from e

        self._init_database()

    def _init_database(self):
        with self._lock:
            try:
                cursor = self.conn.cursor()

                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute("PRAGMA foreign_keys=ON;")

                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS sessions (
                        id TEXT PRIMARY KEY,
                        folder_path TEXT NOT NULL,
                        last_opened REAL,
                        last_selected_index INTEGER NOT NULL DEFAULT 0,
                        total_files INTEGER NOT NULL DEFAULT 0,
                        created_at REAL NOT NULL
                    )
                ''')

                # Labels outlive "clear all sessions": session ids are derived
                # from the folder path, so they re-attach on the next open.
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS labels (
                        session_id TEXT NOT NULL,
                        filename TEXT NOT NULL,
                        label TEXT NOT NULL,
                        updated_at REAL NOT NULL,
                        PRIMARY KEY (session_id, filename)
                    )
                ''')

                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS thumbnail_cache (
                        session_id TEXT NOT NULL,
                        filename TEXT NOT NULL,
                        cache_path TEXT NOT NULL,
                        preview_path TEXT,
                        original_modified REAL,
                        created_at REAL NOT NULL,
                        PRIMARY KEY (session_id, filename),
                        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
                    )
                ''')
                cursor.execute('CREATE INDEX IF NOT EXISTS idx_labels_label ON labels(session_id, label)')

                self.conn.commit()
                logger.info(f"Session database initialized: {self.db_path}")

            except sqlite3.Error as e:
                logger.error(f"Error initializing session database: {e}")
                raise DatabaseError(str(e)) from e

    def _execute_write(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement under the lock; returns the affected row count."""
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Write failed ({sql.split()[0]}): {e}")
                raise DatabaseError(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Query failed: {e}")
                raise DatabaseError(str(e)) from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    _SESSION_COLUMNS = "id, folder_path, last_opened, last_selected_index, total_files, created_at"

    def get_or_create_session(self, folder_path: str, total_files: int = 0) -> Session:
        """
        Insert the session for *folder_path*, or refresh ``last_opened`` and
        ``total_files`` of the existing row. ``last_selected_index`` survives
        re-opens.
        """
        session_id = generate_session_id(folder_path)
        now = time.time()
        with self._lock:
            try:
                self.conn.execute(
                    '''
                    INSERT INTO sessions (id, folder_path, last_opened, total_files, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        last_opened = excluded.last_opened,
                        total_files = excluded.total_files
                    ''',
                    (session_id, folder_path, now, total_files, now),
                )
                self.conn.commit()
                row = self.conn.execute(
                    f"SELECT {self._SESSION_COLUMNS} FROM sessions WHERE id = ?",
                    (session_id,),
                ).fetchone()
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Error upserting session for {folder_path}: {e}")
                raise DatabaseError(str(e)) from e
        logger.debug(f"Session {session_id[:8]} opened for {folder_path} ({total_files} files)")
        return Session(*row)

    def get_session(self, session_id: str) -> Optional[Session]:
        rows = self._query(f"SELECT {self._SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,))
        return Session(*rows[0]) if rows else None

    def update_last_selected_index(self, session_id: str, index: int) -> bool:
        """Point update of the bookmark; returns False when the session is unknown."""
        count = self._execute_write(
            "UPDATE sessions SET last_selected_index = ?, last_opened = ? WHERE id = ?",
            (int(index), time.time(), session_id),
        )
        return count > 0

    def get_session_count(self) -> int:
        return self._query("SELECT COUNT(*) FROM sessions")[0][0]

    def clear_session(self, session_id: str) -> None:
        """Remove one session with its labels and cache rows, atomically."""
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM labels WHERE session_id = ?", (session_id,))
                    self.conn.execute("DELETE FROM thumbnail_cache WHERE session_id = ?", (session_id,))
                    self.conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            except sqlite3.Error as e:
                logger.error(f"Error clearing session {session_id[:8]}: {e}")
                raise DatabaseError(str(e)) from e
        logger.info(f"Cleared session {session_id[:8]}")

    def clear_all_sessions(self) -> int:
        """Delete every session row; cache rows follow through the foreign key."""
        count = self._execute_write("DELETE FROM sessions")
        logger.info(f"Cleared {count} sessions")
        return count

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def set_label(self, session_id: str, filename: str, label: Union[str, KnownLabel, None]) -> None:
        """Upsert a label, or delete the row when *label* is None or empty."""
        if isinstance(label, KnownLabel):
            label = label.value
        if not label:
            self._execute_write(
                "DELETE FROM labels WHERE session_id = ? AND filename = ?",
                (session_id, filename),
            )
            logger.debug(f"Cleared label for {filename} in session {session_id[:8]}")
            return
        self._execute_write(
            '''
            INSERT INTO labels (session_id, filename, label, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(session_id, filename) DO UPDATE SET
                label = excluded.label,
                updated_at = excluded.updated_at
            ''',
            (session_id, filename, str(label), time.time()),
        )
        logger.debug(f"Set label '{label}' for {filename} in session {session_id[:8]}")

    def get_label(self, session_id: str, filename: str) -> Optional[str]:
        rows = self._query(
            "SELECT label FROM labels WHERE session_id = ? AND filename = ?",
            (session_id, filename),
        )
        return rows[0][0] if rows else None

    def get_labels(self, session_id: str) -> List[Label]:
        rows = self._query(
            "SELECT session_id, filename, label, updated_at FROM labels "
            "WHERE session_id = ? ORDER BY filename",
            (session_id,),
        )
        return [Label(*row) for row in rows]

    def get_rejected_filenames(self, session_id: str) -> Set[str]:
        rows = self._query(
            "SELECT filename FROM labels WHERE session_id = ? AND label = ?",
            (session_id, KnownLabel.REJECTED.value),
        )
        return {row[0] for row in rows}

    def get_label_count(self) -> int:
        return self._query("SELECT COUNT(*) FROM labels")[0][0]

    def clear_all_labels(self) -> int:
        count = self._execute_write("DELETE FROM labels")
        logger.info(f"Cleared {count} labels")
        return count

    # ------------------------------------------------------------------
    # Thumbnail cache metadata
    # ------------------------------------------------------------------

    def set_thumbnail_cache(self, session_id: str, filename: str, cache_path: str,
                            original_modified: Optional[float] = None,
                            preview_path: Optional[str] = None) -> None:
        self._execute_write(
            '''
            INSERT INTO thumbnail_cache
                (session_id, filename, cache_path, preview_path, original_modified, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id, filename) DO UPDATE SET
                cache_path = excluded.cache_path,
                preview_path = COALESCE(excluded.preview_path, thumbnail_cache.preview_path),
                original_modified = excluded.original_modified
            ''',
            (session_id, filename, cache_path, preview_path, original_modified, time.time()),
        )

    def get_thumbnail_cache(self, session_id: str, filename: str) -> Optional[ThumbnailCacheEntry]:
        rows = self._query(
            "SELECT session_id, filename, cache_path, preview_path, original_modified, created_at "
            "FROM thumbnail_cache WHERE session_id = ? AND filename = ?",
            (session_id, filename),
        )
        return ThumbnailCacheEntry(*rows[0]) if rows else None

    def clear_thumbnail_cache(self, session_id: str) -> int:
        return self._execute_write("DELETE FROM thumbnail_cache WHERE session_id = ?", (session_id,))

    def close(self):
        with self._lock:
            try:
                self.conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing session database: {e}")
