"""Nested-structure materializer.

Runs after the parent row is committed. Children are inserted with
``ON CONFLICT DO NOTHING`` on (parent, child key), so redelivered children
are no-ops. Each child gets its own savepoint; a child that fails to
normalize or persist is skipped along with its subtree, and its siblings
carry on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lifeboard.core.errors import MISSING_REQUIRED_FIELD, PERSISTENCE_ERROR, ValidationError
from lifeboard.db.engine import dialect_insert
from lifeboard.db.models import ContentNode, Utterance, new_id
from lifeboard.sync.normalize import (
    CONTENT_NODE,
    UTTERANCE,
    CanonicalRecord,
    external_id_of,
    normalize_child,
)

logger = logging.getLogger(__name__)

# Deeper nodes are skipped
MAX_TREE_DEPTH = 256

SkipCallback = Callable[[str], None]


@dataclass
class ChildOutcome:
    """Counts for one parent's children."""

    inserted: int = 0
    existing: int = 0
    skipped: int = 0

    def skip(self, reason: str, on_skip: SkipCallback | None) -> None:
        self.skipped += 1
        if on_skip is not None:
            on_skip(reason)


def materialize_children(
    session: Session,
    record: CanonicalRecord,
    parent_id: str,
    on_skip: SkipCallback | None = None,
    max_depth: int = MAX_TREE_DEPTH,
) -> ChildOutcome:
    """Persist a parent record's children."""
    if record.record_type == "lifelog":
        return materialize_content_tree(session, parent_id, record.children, on_skip, max_depth)
    if record.record_type == "conversation":
        return materialize_utterances(session, parent_id, record.children, on_skip)
    return ChildOutcome()


def materialize_content_tree(
    session: Session,
    entry_id: str,
    nodes: list[Any],
    on_skip: SkipCallback | None = None,
    max_depth: int = MAX_TREE_DEPTH,
) -> ChildOutcome:
    """Persist a lifelog content tree depth-first in source order.

    Uses an explicit stack. A node's key is its source id, or its positional
    path (``"0.2.1"``) when the source gives none.
    """
    outcome = ChildOutcome()
    # (raw node, parent node id, positional path, depth, position)
    stack: list[tuple[Any, str | None, str, int, int]] = [
        (node, None, str(index), 0, index) for index, node in reversed(list(enumerate(nodes)))
    ]

    while stack:
        raw, parent_node_id, path, depth, position = stack.pop()
        if depth > max_depth:
            outcome.skip(f"node {path}: deeper than {max_depth}", on_skip)
            continue
        try:
            values = normalize_child(CONTENT_NODE, raw)
        except ValidationError as exc:
            outcome.skip(f"node {path}: {exc}", on_skip)
            continue

        node_key = external_id_of(raw, ("id", "node_id")) or path
        try:
            node_id, created = _insert_node(
                session, entry_id, parent_node_id, node_key, position, depth, values
            )
        except SQLAlchemyError as exc:
            logger.warning("Content node %s of entry %s failed: %s", path, entry_id, exc)
            outcome.skip(f"node {path}: {PERSISTENCE_ERROR}", on_skip)
            continue

        if created:
            outcome.inserted += 1
        else:
            outcome.existing += 1

        children = raw.get("children")
        if isinstance(children, list):
            for index in range(len(children) - 1, -1, -1):
                stack.append((children[index], node_id, f"{path}.{index}", depth + 1, index))

    return outcome


def _insert_node(
    session: Session,
    entry_id: str,
    parent_id: str | None,
    node_key: str,
    position: int,
    depth: int,
    values: dict[str, Any],
) -> tuple[str, bool]:
    """Insert one node if absent; return its id and whether it was created."""
    node_id = new_id()
    stmt = (
        dialect_insert(session, ContentNode)
        .values(
            id=node_id,
            entry_id=entry_id,
            parent_id=parent_id,
            node_key=node_key,
            position=position,
            depth=depth,
            **values,
        )
        .on_conflict_do_nothing(index_elements=[ContentNode.entry_id, ContentNode.node_key])
    )
    with session.begin_nested():
        result = session.execute(stmt)
    if result.rowcount == 1:
        return node_id, True
    existing = session.scalar(
        select(ContentNode.id).where(
            ContentNode.entry_id == entry_id, ContentNode.node_key == node_key
        )
    )
    if existing is None:
        msg = f"content node {node_key} neither inserted nor found"
        raise SQLAlchemyError(msg)
    return existing, False


def _flatten_utterances(items: list[Any]) -> list[Any]:
    """Bee nests utterances inside transcription objects; flatten them."""
    flat: list[Any] = []
    for item in items:
        nested = item.get("utterances") if isinstance(item, dict) else None
        if isinstance(nested, list):
            flat.extend(nested)
        else:
            flat.append(item)
    return flat


def materialize_utterances(
    session: Session,
    conversation_id: str,
    items: list[Any],
    on_skip: SkipCallback | None = None,
) -> ChildOutcome:
    """Persist a conversation's utterances (one flat level)."""
    outcome = ChildOutcome()
    for position, raw in enumerate(_flatten_utterances(items)):
        utterance_id = external_id_of(raw, UTTERANCE.id_keys) if isinstance(raw, dict) else None
        if utterance_id is None:
            outcome.skip(f"utterance {position}: {MISSING_REQUIRED_FIELD}: external_id", on_skip)
            continue
        try:
            values = normalize_child(UTTERANCE, raw)
        except ValidationError as exc:
            outcome.skip(f"utterance {utterance_id}: {exc}", on_skip)
            continue

        stmt = (
            dialect_insert(session, Utterance)
            .values(
                id=new_id(),
                conversation_id=conversation_id,
                external_id=utterance_id,
                position=position,
                **values,
            )
            .on_conflict_do_nothing(index_elements=[Utterance.conversation_id, Utterance.external_id])
        )
        try:
            with session.begin_nested():
                result = session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.warning("Utterance %s of conversation %s failed: %s", utterance_id, conversation_id, exc)
            outcome.skip(f"utterance {utterance_id}: {PERSISTENCE_ERROR}", on_skip)
            continue

        if result.rowcount == 1:
            outcome.inserted += 1
        else:
            outcome.existing += 1
    return outcome
