"""
Staging store: durable inbox of raw entity and relationship mentions.

Rows are appended by the extraction stage and consumed oldest-first by the
resolvers. A row is processed once its status leaves ``pending``; marking is
idempotent and always addresses rows by their own id.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

from .models import (
    StagedEntity,
    StagedKind,
    StagedRelationship,
    StagedStatus,
    utcnow,
)
from .storage import Database
from .utils.logger import logger

_TABLES = {
    StagedKind.ENTITY: "staged_entity",
    StagedKind.RELATIONSHIP: "staged_relationship",
}


def _table(kind: Union[StagedKind, str]) -> str:
    return _TABLES[StagedKind(kind)]


class StagingStore:
    """FIFO-by-extraction-time inbox backed by the ``staged_*`` tables."""

    def __init__(self, db: Database):
        self.db = db

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def enqueue_entities(self, rows: Iterable[StagedEntity]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        self.db.executemany(
            """
            INSERT INTO staged_entity (id, name, type, description, episode_id, episode_title,
                                       extracted_at, status, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending',
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM staged_entity))
            """,
            [
                (r.id, r.name, r.type, r.description, r.episode_id, r.episode_title, r.extracted_at)
                for r in rows
            ],
            "enqueue entities",
        )
        logger.debug(f"Staged {len(rows)} entities")
        return len(rows)

    def enqueue_relationships(self, rows: Iterable[StagedRelationship]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        self.db.executemany(
            """
            INSERT INTO staged_relationship (id, source_name, target_name, description, episode_id,
                                             episode_title, extracted_at, status, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending',
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM staged_relationship))
            """,
            [
                (r.id, r.source_name, r.target_name, r.description, r.episode_id, r.episode_title,
                 r.extracted_at)
                for r in rows
            ],
            "enqueue relationships",
        )
        logger.debug(f"Staged {len(rows)} relationships")
        return len(rows)

    # -------------------------------------------------------------------------
    # Dequeue
    # -------------------------------------------------------------------------

    def dequeue(
        self,
        kind: Union[StagedKind, str],
        limit: int,
        processed: bool = False,
    ) -> List[Union[StagedEntity, StagedRelationship]]:
        """
        Oldest-first rows up to ``limit``.

        Dequeuing does not claim rows: two concurrent callers can receive the
        same rows, so resolution runs must be serialized.
        """
        kind = StagedKind(kind)
        status_clause = "status != 'pending'" if processed else "status = 'pending'"
        rows = self.db.query(
            f"""
            SELECT * FROM {_table(kind)}
            WHERE {status_clause}
            ORDER BY extracted_at ASC, seq ASC
            LIMIT ?
            """,
            (limit,),
            f"dequeue {kind.value}",
        )
        if kind == StagedKind.ENTITY:
            return [
                StagedEntity(
                    id=r["id"],
                    name=r["name"],
                    type=r["type"],
                    description=r["description"],
                    episode_id=r["episode_id"],
                    episode_title=r["episode_title"],
                    extracted_at=r["extracted_at"],
                    status=r["status"],
                    resolution_note=r["resolution_note"],
                    processed_at=r["processed_at"],
                )
                for r in rows
            ]
        return [
            StagedRelationship(
                id=r["id"],
                source_name=r["source_name"],
                target_name=r["target_name"],
                description=r["description"],
                episode_id=r["episode_id"],
                episode_title=r["episode_title"],
                extracted_at=r["extracted_at"],
                status=r["status"],
                resolution_note=r["resolution_note"],
                processed_at=r["processed_at"],
            )
            for r in rows
        ]

    # -------------------------------------------------------------------------
    # Marking
    # -------------------------------------------------------------------------

    def mark_processed(
        self,
        kind: Union[StagedKind, str],
        ids: Iterable[str],
        status: StagedStatus = StagedStatus.RESOLVED,
        note: Optional[str] = None,
    ) -> int:
        """
        Flip pending rows to ``status``. Rows already processed are left untouched,
        so calling twice is harmless.

        Returns:
            Number of rows that changed
        """
        ids = list(ids)
        if not ids:
            return 0
        if status == StagedStatus.PENDING:
            raise ValueError("mark_processed needs a terminal status")

        now = utcnow()
        placeholders = ",".join("?" for _ in ids)
        return self.db.execute(
            f"""
            UPDATE {_table(kind)}
            SET status = ?, resolution_note = ?, processed_at = ?
            WHERE id IN ({placeholders}) AND status = 'pending'
            """,
            (StagedStatus(status).value, note, now, *ids),
            f"mark {StagedKind(kind).value} processed",
        )

    # -------------------------------------------------------------------------
    # Stats & retention
    # -------------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        counts = {}
        for kind, table in _TABLES.items():
            row = self.db.query_one(
                f"""
                SELECT SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending,
                       SUM(CASE WHEN status != 'pending' THEN 1 ELSE 0 END) AS processed,
                       SUM(CASE WHEN status = 'unresolved' THEN 1 ELSE 0 END) AS unresolved
                FROM {table}
                """,
                operation="staging stats",
            )
            counts[kind] = {
                "pending": row["pending"] or 0,
                "processed": row["processed"] or 0,
                "unresolved": row["unresolved"] or 0,
            }
        return {
            "pendingEntities": counts[StagedKind.ENTITY]["pending"],
            "pendingRelationships": counts[StagedKind.RELATIONSHIP]["pending"],
            "processedEntities": counts[StagedKind.ENTITY]["processed"],
            "processedRelationships": counts[StagedKind.RELATIONSHIP]["processed"],
            "unresolvedEntities": counts[StagedKind.ENTITY]["unresolved"],
            "unresolvedRelationships": counts[StagedKind.RELATIONSHIP]["unresolved"],
        }

    def purge_processed_older_than(self, cutoff: Union[datetime, str]) -> Dict[str, int]:
        """Delete processed rows extracted before ``cutoff``. Pending rows are never purged."""
        if isinstance(cutoff, datetime):
            if cutoff.tzinfo is None:
                cutoff = cutoff.replace(tzinfo=timezone.utc)
            cutoff = cutoff.isoformat()

        removed = {}
        for kind, table in _TABLES.items():
            removed[kind] = self.db.execute(
                f"DELETE FROM {table} WHERE status != 'pending' AND extracted_at < ?",
                (cutoff,),
                f"purge {kind.value}",
            )
        logger.info(
            f"Purged {removed[StagedKind.ENTITY]} staged entities and "
            f"{removed[StagedKind.RELATIONSHIP]} staged relationships older than {cutoff}"
        )
        return {
            "entitiesRemoved": removed[StagedKind.ENTITY],
            "relationshipsRemoved": removed[StagedKind.RELATIONSHIP],
        }

    def purge_older_than_days(self, days: int) -> Dict[str, int]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        return self.purge_processed_older_than(cutoff)
