"""Upsert reconciler.

One statement per record: ``INSERT ... ON CONFLICT (external_id) DO UPDATE``
that overwrites every mutable column and bumps ``revision``. The returned
revision tells inserts (revision 1) from updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from lifeboard.core.errors import PersistenceConflictError
from lifeboard.db.engine import dialect_insert
from lifeboard.db.models import RECORD_MODELS, new_id
from lifeboard.sync.normalize import CanonicalRecord

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"


@dataclass
class UpsertOutcome:
    record_id: str
    outcome: str
    revision: int

    @property
    def inserted(self) -> bool:
        return self.outcome == INSERTED


def dedupe(records: list[CanonicalRecord]) -> tuple[list[CanonicalRecord], int]:
    """Collapse records sharing (record_type, external_id); the last one wins.

    Returns the surviving records in first-seen order and the number dropped.
    """
    latest: dict[tuple[str, str], CanonicalRecord] = {}
    for record in records:
        latest[(record.record_type, record.external_id)] = record
    return list(latest.values()), len(records) - len(latest)


def upsert(session: Session, record: CanonicalRecord) -> UpsertOutcome:
    """Insert a record, or update it in place if its external id exists.

    Raises:
        PersistenceConflictError: If the statement returns no row.
    """
    model = RECORD_MODELS[record.record_type]
    stmt = dialect_insert(session, model).values(
        id=new_id(),
        external_id=record.external_id,
        revision=1,
        **record.values,
    )
    changes = {column: stmt.excluded[column] for column in record.values}
    changes["revision"] = model.revision + 1
    changes["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(
        index_elements=[model.external_id], set_=changes
    ).returning(model.id, model.revision)

    row = session.execute(stmt).one_or_none()
    if row is None:
        msg = f"{record.record_type} {record.external_id}: upsert returned no row"
        raise PersistenceConflictError(msg)

    record_id, revision = row
    outcome = INSERTED if revision == 1 else UPDATED
    logger.debug("%s %s %s (revision %d)", record.record_type, record.external_id, outcome, revision)
    return UpsertOutcome(record_id=record_id, outcome=outcome, revision=revision)
