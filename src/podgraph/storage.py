"""
SQLite storage for the staging inbox and the canonical graph.

The database registers a ``similarity(a, b)`` SQL function implementing
pg_trgm trigram similarity, so fuzzy lookups can filter and order in SQL.

Uniqueness is enforced by the schema:
- entity:         UNIQUE(normalized_name, type), created with ON CONFLICT DO NOTHING
- entity_mention: UNIQUE(episode_id, entity_id)
- connection:     UNIQUE(episode_id, source_entity_id, target_entity_id),
                  CHECK(source_entity_id <> target_entity_id)
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .models import Connection, Entity, EntityMention, new_id, utcnow
from .normalization import canonical_key, trigram_similarity
from .utils.errors import StoreUnavailableError, TransientStoreError
from .utils.logger import logger

SCHEMA = """
CREATE TABLE IF NOT EXISTS staged_entity (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    description TEXT,
    episode_id TEXT NOT NULL,
    episode_title TEXT NOT NULL DEFAULT '',
    extracted_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    resolution_note TEXT,
    processed_at TEXT,
    seq INTEGER
);
CREATE INDEX IF NOT EXISTS idx_staged_entity_pending
    ON staged_entity(status, extracted_at, seq);

CREATE TABLE IF NOT EXISTS staged_relationship (
    id TEXT PRIMARY KEY,
    source_name TEXT NOT NULL,
    target_name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    episode_id TEXT NOT NULL,
    episode_title TEXT NOT NULL DEFAULT '',
    extracted_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    resolution_note TEXT,
    processed_at TEXT,
    seq INTEGER
);
CREATE INDEX IF NOT EXISTS idx_staged_relationship_pending
    ON staged_relationship(status, extracted_at, seq);

CREATE TABLE IF NOT EXISTS entity (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    description TEXT,
    normalized_name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(normalized_name, type)
);
CREATE INDEX IF NOT EXISTS idx_entity_type ON entity(type);

CREATE TABLE IF NOT EXISTS entity_mention (
    episode_id TEXT NOT NULL,
    entity_id TEXT NOT NULL REFERENCES entity(id),
    UNIQUE(episode_id, entity_id)
);

CREATE TABLE IF NOT EXISTS connection (
    id TEXT PRIMARY KEY,
    episode_id TEXT NOT NULL,
    source_entity_id TEXT NOT NULL REFERENCES entity(id),
    target_entity_id TEXT NOT NULL REFERENCES entity(id),
    strength INTEGER NOT NULL DEFAULT 1 CHECK(strength >= 1),
    description TEXT,
    confidence REAL,
    created_at TEXT NOT NULL,
    UNIQUE(episode_id, source_entity_id, target_entity_id),
    CHECK(source_entity_id <> target_entity_id)
);
CREATE INDEX IF NOT EXISTS idx_connection_pair
    ON connection(source_entity_id, target_entity_id);
"""

# OperationalError messages that mean the store itself is gone
_UNAVAILABLE_PATTERNS = (
    "unable to open",
    "disk i/o error",
    "file is not a database",
    "database disk image is malformed",
    "closed database",
)

_ENTITY_COLUMNS = "id, name, type, description, normalized_name"


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        description=row["description"],
        normalized_name=row["normalized_name"],
    )


def _row_to_connection(row: sqlite3.Row) -> Connection:
    return Connection(
        id=row["id"],
        episode_id=row["episode_id"],
        source_entity_id=row["source_entity_id"],
        target_entity_id=row["target_entity_id"],
        strength=row["strength"],
        description=row["description"],
        confidence=row["confidence"],
    )


class Database:
    """
    Single SQLite connection shared by the staging store and the resolvers.

    Writes are serialized with a lock; the pipeline is a single-writer workload.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        if db_path is None:
            from .constants import DB_PATH

            db_path = DB_PATH

        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open database at {self.db_path}: {e}") from e

        self.conn.row_factory = sqlite3.Row
        self.conn.create_function("similarity", 2, trigram_similarity, deterministic=True)
        self.conn.execute("PRAGMA foreign_keys = ON")
        logger.debug(f"Opened database at {self.db_path}")

    def init_schema(self) -> None:
        """Create tables and indexes if missing."""
        with self.guard("init schema"):
            self.conn.executescript(SCHEMA)
        logger.info(f"Database schema ready at {self.db_path}")

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def guard(self, operation: str) -> Iterator[None]:
        """Translate driver errors into the pipeline's error taxonomy."""
        try:
            with self._lock:
                yield
        except (StoreUnavailableError, TransientStoreError):
            raise
        except sqlite3.ProgrammingError as e:
            raise StoreUnavailableError(f"{operation}: {e}") from e
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if any(p in message for p in _UNAVAILABLE_PATTERNS):
                raise StoreUnavailableError(f"{operation}: {e}") from e
            raise TransientStoreError(f"{operation}: {e}") from e
        except sqlite3.Error as e:
            raise TransientStoreError(f"{operation}: {e}") from e

    def query(self, sql: str, params: Tuple[Any, ...] = (), operation: str = "query") -> List[sqlite3.Row]:
        with self.guard(operation):
            return self.conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Tuple[Any, ...] = (), operation: str = "query") -> Optional[sqlite3.Row]:
        with self.guard(operation):
            return self.conn.execute(sql, params).fetchone()

    def execute(self, sql: str, params: Tuple[Any, ...] = (), operation: str = "write") -> int:
        """Run one write statement in its own transaction; returns affected rows."""
        with self.guard(operation):
            with self.conn:
                return self.conn.execute(sql, params).rowcount

    def executemany(self, sql: str, rows: List[Tuple[Any, ...]], operation: str = "write") -> int:
        with self.guard(operation):
            with self.conn:
                return self.conn.executemany(sql, rows).rowcount


class GraphStore:
    """Canonical Entity / EntityMention / Connection access."""

    def __init__(self, db: Database):
        self.db = db

    # -------------------------------------------------------------------------
    # Entity lookups
    # -------------------------------------------------------------------------

    @staticmethod
    def _type_clause(entity_type: Optional[str]) -> Tuple[str, Tuple[Any, ...]]:
        if entity_type is None:
            return "", ()
        return " AND type = ?", (entity_type,)

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self.db.query_one(
            f"SELECT {_ENTITY_COLUMNS} FROM entity WHERE id = ?", (entity_id,), "get entity"
        )
        return _row_to_entity(row) if row else None

    def find_exact(self, name: str, entity_type: Optional[str] = None, limit: int = 1) -> List[Entity]:
        """Case-insensitive match on the stored name or its normalized form."""
        lowered = name.lower().strip()
        clause, params = self._type_clause(entity_type)
        rows = self.db.query(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entity
            WHERE (LOWER(name) = ? OR normalized_name = ?){clause}
            ORDER BY created_at ASC
            LIMIT ?
            """,
            (lowered, lowered, *params, limit),
            "find exact",
        )
        return [_row_to_entity(r) for r in rows]

    def find_by_normalized(self, normalized: str, entity_type: Optional[str] = None, limit: int = 1) -> List[Entity]:
        if not normalized:
            return []
        clause, params = self._type_clause(entity_type)
        rows = self.db.query(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entity
            WHERE normalized_name = ?{clause}
            ORDER BY created_at ASC
            LIMIT ?
            """,
            (normalized, *params, limit),
            "find normalized",
        )
        return [_row_to_entity(r) for r in rows]

    def find_fuzzy(
        self,
        text: str,
        entity_type: Optional[str] = None,
        threshold: float = 0.8,
        limit: int = 5,
        on_normalized: bool = True,
    ) -> List[Tuple[Entity, float]]:
        """Entities whose trigram similarity to ``text`` exceeds ``threshold``, best first."""
        if not text:
            return []
        column = "normalized_name" if on_normalized else "LOWER(name)"
        clause, params = self._type_clause(entity_type)
        rows = self.db.query(
            f"""
            SELECT {_ENTITY_COLUMNS}, similarity({column}, ?) AS sim_score
            FROM entity
            WHERE similarity({column}, ?) > ?{clause}
            ORDER BY sim_score DESC, LENGTH(name) ASC
            LIMIT ?
            """,
            (text, text, threshold, *params, limit),
            "find fuzzy",
        )
        return [(_row_to_entity(r), float(r["sim_score"])) for r in rows]

    def find_containing(self, text: str, entity_type: Optional[str] = None, limit: int = 5) -> List[Entity]:
        """Entities whose name contains ``text`` or is contained in it."""
        lowered = text.lower().strip()
        if not lowered:
            return []
        clause, params = self._type_clause(entity_type)
        rows = self.db.query(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entity
            WHERE (INSTR(LOWER(name), ?) > 0 OR INSTR(?, LOWER(name)) > 0){clause}
            ORDER BY LENGTH(name) ASC
            LIMIT ?
            """,
            (lowered, lowered, *params, limit),
            "find containing",
        )
        return [_row_to_entity(r) for r in rows]

    def find_by_tokens(self, tokens: List[str], entity_type: Optional[str] = None, limit: int = 10) -> List[Entity]:
        """Broad slice: entities whose name mentions any token."""
        tokens = [t.lower() for t in tokens if len(t) >= 3]
        if not tokens:
            return []
        clause, params = self._type_clause(entity_type)
        likes = " OR ".join("INSTR(LOWER(name), ?) > 0" for _ in tokens)
        rows = self.db.query(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entity
            WHERE ({likes}){clause}
            ORDER BY LENGTH(name) ASC
            LIMIT ?
            """,
            (*tokens, *params, limit),
            "find by tokens",
        )
        return [_row_to_entity(r) for r in rows]

    # -------------------------------------------------------------------------
    # Entity writes
    # -------------------------------------------------------------------------

    def create_entity(self, name: str, entity_type: str, description: Optional[str] = None) -> Tuple[Entity, bool]:
        """
        Insert a canonical entity unless one with the same normalized name and type exists.

        Returns:
            (entity, created) where ``entity`` is the row now stored
        """
        normalized = canonical_key(name)
        with self.db.guard("create entity"):
            with self.db.conn:
                cursor = self.db.conn.execute(
                    """
                    INSERT INTO entity (id, name, type, description, normalized_name, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(normalized_name, type) DO NOTHING
                    """,
                    (new_id(), name.strip(), entity_type, description, normalized, utcnow()),
                )
                created = cursor.rowcount == 1
                row = self.db.conn.execute(
                    f"SELECT {_ENTITY_COLUMNS} FROM entity WHERE normalized_name = ? AND type = ?",
                    (normalized, entity_type),
                ).fetchone()
        return _row_to_entity(row), created

    def update_entity(self, entity_id: str, name: Optional[str] = None, description: Optional[str] = None) -> None:
        """Update the display name and/or description; normalized_name stays fixed."""
        if name is not None:
            self.db.execute("UPDATE entity SET name = ? WHERE id = ?", (name, entity_id), "update entity name")
        if description is not None:
            self.db.execute(
                "UPDATE entity SET description = ? WHERE id = ?", (description, entity_id), "update entity description"
            )

    def upsert_mention(self, episode_id: str, entity_id: str) -> bool:
        """Record that an entity was mentioned in an episode. True if newly recorded."""
        changed = self.db.execute(
            """
            INSERT INTO entity_mention (episode_id, entity_id) VALUES (?, ?)
            ON CONFLICT(episode_id, entity_id) DO NOTHING
            """,
            (episode_id, entity_id),
            "upsert mention",
        )
        return changed == 1

    def mentions_of(self, entity_id: str) -> List[EntityMention]:
        rows = self.db.query(
            "SELECT episode_id, entity_id FROM entity_mention WHERE entity_id = ? ORDER BY episode_id",
            (entity_id,),
            "list mentions",
        )
        return [EntityMention(episode_id=r["episode_id"], entity_id=r["entity_id"]) for r in rows]

    def count_entities(self, entity_type: Optional[str] = None) -> int:
        clause, params = self._type_clause(entity_type)
        row = self.db.query_one(f"SELECT COUNT(*) AS n FROM entity WHERE 1 = 1{clause}", params, "count entities")
        return row["n"]

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def get_connection(self, episode_id: str, source_id: str, target_id: str) -> Optional[Connection]:
        row = self.db.query_one(
            """
            SELECT * FROM connection
            WHERE episode_id = ? AND source_entity_id = ? AND target_entity_id = ?
            """,
            (episode_id, source_id, target_id),
            "get connection",
        )
        return _row_to_connection(row) if row else None

    def upsert_connection(
        self,
        episode_id: str,
        source_id: str,
        target_id: str,
        description: Optional[str] = None,
        confidence: Optional[float] = None,
        replace_description: bool = True,
    ) -> Tuple[Connection, bool]:
        """
        Insert an edge with strength 1, or increment the strength of the existing one.

        Returns:
            (connection, created)
        """
        if source_id == target_id:
            raise ValueError("Self-referential connections are not allowed")

        with self.db.guard("upsert connection"):
            with self.db.conn:
                self.db.conn.execute(
                    """
                    INSERT INTO connection (id, episode_id, source_entity_id, target_entity_id,
                                            strength, description, confidence, created_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                    ON CONFLICT(episode_id, source_entity_id, target_entity_id) DO UPDATE SET
                        strength = strength + 1,
                        description = CASE
                            WHEN ? AND excluded.description IS NOT NULL AND excluded.description <> ''
                            THEN excluded.description
                            ELSE description
                        END,
                        confidence = MAX(COALESCE(confidence, 0), COALESCE(excluded.confidence, 0))
                    """,
                    (new_id(), episode_id, source_id, target_id, description, confidence, utcnow(),
                     1 if replace_description else 0),
                )
                row = self.db.conn.execute(
                    """
                    SELECT * FROM connection
                    WHERE episode_id = ? AND source_entity_id = ? AND target_entity_id = ?
                    """,
                    (episode_id, source_id, target_id),
                ).fetchone()
        connection = _row_to_connection(row)
        return connection, connection.strength == 1

    def connection_exists_between(self, source_id: str, target_id: str) -> bool:
        """Any connection from source to target, in any episode."""
        row = self.db.query_one(
            "SELECT 1 FROM connection WHERE source_entity_id = ? AND target_entity_id = ? LIMIT 1",
            (source_id, target_id),
            "connection exists",
        )
        return row is not None

    def common_episode(self, entity_a: str, entity_b: str) -> Optional[str]:
        """An episode in which both entities are mentioned."""
        row = self.db.query_one(
            """
            SELECT m1.episode_id FROM entity_mention m1
            JOIN entity_mention m2 ON m1.episode_id = m2.episode_id
            WHERE m1.entity_id = ? AND m2.entity_id = ?
            ORDER BY m1.episode_id
            LIMIT 1
            """,
            (entity_a, entity_b),
            "common episode",
        )
        return row["episode_id"] if row else None

    def connection_stats(self) -> Dict[str, Any]:
        row = self.db.query_one(
            """
            SELECT COUNT(*) AS connections,
                   COALESCE(SUM(strength), 0) AS total_strength,
                   COALESCE(AVG(strength), 0) AS average_strength,
                   COALESCE(MAX(strength), 0) AS max_strength
            FROM connection
            """,
            operation="connection stats",
        )
        return {
            "connections": row["connections"],
            "totalStrength": row["total_strength"],
            "averageStrength": round(float(row["average_strength"]), 3),
            "maxStrength": row["max_strength"],
        }
