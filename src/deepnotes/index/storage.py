"""SQLite vector store for note chunks."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence

import numpy as np

from deepnotes.embedding.base import EmbedFn, Vector
from deepnotes.models import NoteChunk, VectorRecord

LOGGER = logging.getLogger(__name__)

DIMENSION_KEY = "dimension"


class StoreError(RuntimeError):
    """The index database is unavailable, closed or corrupt."""


class DimensionMismatchError(StoreError):
    """A vector does not match the dimension the index was built with."""


def as_vector(value: Optional[Vector]) -> np.ndarray:
    """Coerce an embedding result to a flat float32 array (empty for None)."""
    if value is None:
        return np.empty(0, dtype="float32")
    return np.asarray(value, dtype="float32").ravel()


def cosine_scores(embeddings: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row against ``query``; zero-norm rows score 0."""
    norms = np.linalg.norm(embeddings, axis=1) * np.linalg.norm(query)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = (embeddings @ query) / norms
    return np.nan_to_num(scores, nan=0.0, posinf=0.0, neginf=0.0)


class SQLiteVectorStore:
    """Persistence layer for chunk embeddings and their freshness markers.

    The store must be opened before use, either with ``open()``/``close()``
    or as a context manager. One connection is shared behind a re-entrant
    lock, so readers on other threads may observe a pass in progress.
    """

    def __init__(self, db_path: Path, *, dimension: int | None = None) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._configured_dimension = dimension
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError(f"Vector store is not open: {self.db_path}")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "SQLiteVectorStore":
        with self._lock:
            if self._conn is not None:
                return self
            conn: sqlite3.Connection | None = None
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            except (OSError, sqlite3.Error) as exc:
                if conn is not None:
                    conn.close()
                raise StoreError(f"Cannot open index at {self.db_path}: {exc}") from exc
            self._conn = conn
            try:
                self.initialize()
            except StoreError:
                self.close()
                raise
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "SQLiteVectorStore":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.connection
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreError(f"Index write failed: {exc}") from exc
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.connection
            except sqlite3.Error as exc:
                raise StoreError(f"Index read failed: {exc}") from exc

    def initialize(self) -> None:
        """Create the schema if it does not exist yet. Idempotent."""
        with self.transaction() as conn:
            self._create_schema(conn)
            stored = self._stored_dimension(conn)

        if stored is not None:
            if self._configured_dimension is not None and stored != self._configured_dimension:
                LOGGER.warning(
                    "Index was built with dimension %d but the provider reports %d; "
                    "clear the index and re-index the vault",
                    stored,
                    self._configured_dimension,
                )
            self.dimension = stored

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                id INTEGER PRIMARY KEY,
                document_path TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                heading TEXT NOT NULL,
                text TEXT NOT NULL,
                mtime INTEGER NOT NULL,
                embedding BLOB NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.execute(
            """CREATE INDEX IF NOT EXISTS idx_records_document_path
                ON records(document_path)
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

    @staticmethod
    def _stored_dimension(conn: sqlite3.Connection) -> int | None:
        row = conn.execute("SELECT value FROM meta WHERE key = ?", (DIMENSION_KEY,)).fetchone()
        return int(row["value"]) if row else None

    def _check_dimensions(self, vectors: Sequence[np.ndarray]) -> int | None:
        """Return the common dimension of ``vectors`` or raise on any mismatch."""
        dimensions = {int(vector.size) for vector in vectors}
        if not dimensions:
            return None
        if len(dimensions) > 1:
            raise DimensionMismatchError(f"Provider returned mixed dimensions: {sorted(dimensions)}")
        (dimension,) = dimensions
        if self.dimension is not None and dimension != self.dimension:
            raise DimensionMismatchError(
                f"Vector dimension {dimension} does not match index dimension {self.dimension}"
            )
        return dimension

    def upsert_document(
        self,
        document_path: str,
        chunks: Sequence[NoteChunk],
        mtime: int,
        embed: EmbedFn,
    ) -> int:
        """Replace every record of ``document_path`` with freshly embedded chunks.

        Embedding exceptions propagate before anything is written. Chunks whose
        embedding comes back empty are skipped. Returns the number of records
        written.
        """
        embedded: List[tuple[NoteChunk, np.ndarray]] = []
        for chunk in chunks:
            vector = as_vector(embed(chunk.text))
            if vector.size == 0:
                LOGGER.warning(
                    "Empty vector for chunk %d of %s, skipping", chunk.chunk_index, document_path
                )
                continue
            embedded.append((chunk, vector))

        dimension = self._check_dimensions([vector for _, vector in embedded])

        with self.transaction() as conn:
            if dimension is not None and self.dimension is None:
                conn.execute(
                    "INSERT OR REPLACE INTO meta(key, value) VALUES (?, ?)",
                    (DIMENSION_KEY, str(dimension)),
                )
            conn.execute("DELETE FROM records WHERE document_path = ?", (document_path,))
            for chunk, vector in embedded:
                conn.execute(
                    """
                    INSERT INTO records(document_path, chunk_index, heading, text, mtime, embedding)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document_path,
                        chunk.chunk_index,
                        chunk.heading,
                        chunk.text,
                        int(mtime),
                        sqlite3.Binary(vector.tobytes()),
                    ),
                )

        if dimension is not None and self.dimension is None:
            self.dimension = dimension
        LOGGER.debug("Stored %d/%d chunks for %s", len(embedded), len(chunks), document_path)
        return len(embedded)

    def remove_document(self, document_path: str) -> int:
        """Delete all records of a note. Returns the number removed."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM records WHERE document_path = ?", (document_path,))
        return cursor.rowcount

    def prune(self, keep_paths: Iterable[str]) -> int:
        """Remove records of notes not in ``keep_paths``. Returns the number of notes removed."""
        keep = set(keep_paths)
        missing = [path for path in self.document_paths() if path not in keep]
        with self.transaction() as conn:
            for path in missing:
                conn.execute("DELETE FROM records WHERE document_path = ?", (path,))
        return len(missing)

    def clear(self) -> None:
        """Drop and recreate an empty index, forgetting its dimension."""
        with self.transaction() as conn:
            conn.execute("DROP TABLE IF EXISTS records")
            conn.execute("DROP TABLE IF EXISTS meta")
            self._create_schema(conn)
        self.dimension = self._configured_dimension
        LOGGER.info("Cleared index at %s", self.db_path)

    def is_fresh(self, document_path: str, current_mtime: int) -> bool:
        """True when the note has records and they were built from ``current_mtime`` exactly."""
        with self._reading() as conn:
            row = conn.execute(
                "SELECT mtime FROM records WHERE document_path = ? LIMIT 1",
                (document_path,),
            ).fetchone()
        return row is not None and row["mtime"] == int(current_mtime)

    def query(
        self,
        vector: Vector,
        top_k: int,
        exclude_document_path: str | None = None,
    ) -> List[dict]:
        """Return up to ``top_k`` rows by descending cosine similarity.

        Rows of ``exclude_document_path`` are filtered out before ranking, so
        the result is only short when the index itself is.
        """
        if top_k <= 0:
            return []
        query = as_vector(vector)
        if query.size == 0:
            raise ValueError("Query vector is empty")
        if self.dimension is not None and query.size != self.dimension:
            raise DimensionMismatchError(
                f"Query dimension {query.size} does not match index dimension {self.dimension}"
            )

        sql = """
            SELECT id, document_path, chunk_index, heading, text, mtime, embedding
            FROM records
        """
        params: tuple = ()
        if exclude_document_path is not None:
            sql += " WHERE document_path != ?"
            params = (exclude_document_path,)

        with self._reading() as conn:
            rows = conn.execute(sql, params).fetchall()

        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = cosine_scores(embeddings, query)

        if top_k < len(scores):
            top_indices = np.argpartition(-scores, top_k - 1)[:top_k]
        else:
            top_indices = np.arange(len(scores))
        top_indices = top_indices[np.argsort(-scores[top_indices], kind="stable")]

        results: List[dict] = []
        for idx in top_indices:
            row = rows[idx]
            results.append(
                {
                    "id": row["id"],
                    "document_path": row["document_path"],
                    "chunk_index": row["chunk_index"],
                    "heading": row["heading"],
                    "text": row["text"],
                    "mtime": row["mtime"],
                    "score": float(scores[idx]),
                }
            )
        return results

    def list_document(self, document_path: str) -> List[VectorRecord]:
        """Records of one note, in chunk order."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM records WHERE document_path = ? ORDER BY chunk_index",
                (document_path,),
            ).fetchall()
        return [_to_record(row) for row in rows]

    def list_all(self) -> List[VectorRecord]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM records ORDER BY document_path, chunk_index"
            ).fetchall()
        return [_to_record(row) for row in rows]

    def document_paths(self) -> List[str]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT DISTINCT document_path FROM records ORDER BY document_path"
            ).fetchall()
        return [row["document_path"] for row in rows]

    def stats(self) -> dict:
        with self._reading() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total_records,
                       COUNT(DISTINCT document_path) AS total_documents
                FROM records
                """
            ).fetchone()
        return {
            "total_records": row["total_records"],
            "total_documents": row["total_documents"],
            "dimension": self.dimension,
        }


def _to_record(row: sqlite3.Row) -> VectorRecord:
    return VectorRecord(
        id=row["id"],
        vector=np.frombuffer(row["embedding"], dtype="float32"),
        document_path=row["document_path"],
        chunk_index=row["chunk_index"],
        heading=row["heading"],
        text=row["text"],
        mtime=row["mtime"],
    )
