"""Tests for the nested-structure materializer."""

from __future__ import annotations

from datetime import timezone

from sqlalchemy import func, select

from lifeboard.db.models import ContentNode, Utterance
from lifeboard.sync.materialize import materialize_content_tree, materialize_utterances
from lifeboard.sync.normalize import CONVERSATION, LIFELOG, normalize
from lifeboard.sync.reconcile import upsert

UTC = timezone.utc

TREE = [
    {
        "type": "heading1",
        "content": "Morning",
        "children": [
            {"type": "blockquote", "content": "Good morning", "speakerName": "Alex", "startOffsetMs": 0},
            {"type": "blockquote", "content": "Hi", "speakerName": "Sam", "startOffsetMs": 1500},
        ],
    },
    {"type": "heading2", "content": "Later"},
]


def stored_entry(database, raw):
    with database.session() as session:
        return upsert(session, normalize(LIFELOG, raw, UTC)).record_id


def node_count(database):
    with database.session() as session:
        return session.scalar(select(func.count()).select_from(ContentNode))


def nested(depth):
    """A single chain of ``depth`` nodes."""
    root = {"type": "heading1", "content": "level 0"}
    current = root
    for level in range(1, depth):
        child = {"type": "blockquote", "content": f"level {level}"}
        current["children"] = [child]
        current = child
    return [root]


class TestContentTree:
    def test_persists_tree_with_positions(self, database, make_lifelog):
        """Nodes get positional keys, parent links, positions and depths."""
        entry_id = stored_entry(database, make_lifelog(0))
        with database.session() as session:
            outcome = materialize_content_tree(session, entry_id, TREE)
        assert outcome.inserted == 4
        assert outcome.skipped == 0

        with database.session() as session:
            nodes = {n.node_key: n for n in session.scalars(select(ContentNode))}
        assert set(nodes) == {"0", "0.0", "0.1", "1"}
        assert nodes["0"].parent_id is None
        assert nodes["0.1"].parent_id == nodes["0"].id
        assert nodes["0.1"].position == 1
        assert nodes["0.1"].depth == 1
        assert nodes["0.1"].start_offset_ms == 1500
        assert nodes["1"].node_type == "heading2"

    def test_redelivery_adds_nothing(self, database, make_lifelog):
        """Redelivered children are counted as existing and not inserted again."""
        entry_id = stored_entry(database, make_lifelog(0))
        with database.session() as session:
            materialize_content_tree(session, entry_id, TREE)
        with database.session() as session:
            again = materialize_content_tree(session, entry_id, TREE)
        assert again.inserted == 0
        assert again.existing == 4
        assert node_count(database) == 4

    def test_source_ids_used_as_keys(self, database, make_lifelog):
        """Nodes with their own ids keep them as keys."""
        entry_id = stored_entry(database, make_lifelog(0))
        tree = [{"id": "n-1", "content": "a"}, {"id": "n-2", "content": "b"}]
        with database.session() as session:
            materialize_content_tree(session, entry_id, tree)
        with database.session() as session:
            keys = sorted(session.scalars(select(ContentNode.node_key)))
        assert keys == ["n-1", "n-2"]

    def test_malformed_node_skipped_with_subtree(self, database, make_lifelog):
        """A bad node drops itself and its children; siblings still land."""
        entry_id = stored_entry(database, make_lifelog(0))
        tree = [
            {
                "content": "broken",
                "startTime": "not-a-time",
                "children": [{"content": "orphan"}],
            },
            {"content": "fine"},
        ]
        reasons = []
        with database.session() as session:
            outcome = materialize_content_tree(session, entry_id, tree, on_skip=reasons.append)
        assert outcome.inserted == 1
        assert outcome.skipped == 1
        assert len(reasons) == 1
        assert "invalid_timestamp" in reasons[0]
        with database.session() as session:
            assert list(session.scalars(select(ContentNode.content))) == ["fine"]

    def test_non_object_node_skipped(self, database, make_lifelog):
        """Non-object nodes are skipped."""
        entry_id = stored_entry(database, make_lifelog(0))
        with database.session() as session:
            outcome = materialize_content_tree(session, entry_id, ["junk", {"content": "ok"}])
        assert outcome.skipped == 1
        assert outcome.inserted == 1

    def test_deep_tree_beyond_recursion_limit(self, database, make_lifelog):
        """Trees deeper than the interpreter recursion limit still persist."""
        entry_id = stored_entry(database, make_lifelog(0))
        with database.session() as session:
            outcome = materialize_content_tree(session, entry_id, nested(1200), max_depth=2000)
        assert outcome.inserted == 1200
        with database.session() as session:
            assert session.scalar(select(func.max(ContentNode.depth))) == 1199

    def test_depth_cap(self, database, make_lifelog):
        """Nodes past max_depth are skipped."""
        entry_id = stored_entry(database, make_lifelog(0))
        with database.session() as session:
            outcome = materialize_content_tree(session, entry_id, nested(10), max_depth=2)
        assert outcome.inserted == 3
        assert outcome.skipped == 1


class TestUtterances:
    def stored_conversation(self, database, raw):
        with database.session() as session:
            return upsert(session, normalize(CONVERSATION, raw, UTC)).record_id

    def test_flattens_transcriptions(self, database, make_conversation):
        """Utterances from every transcription are stored in order."""
        raw = make_conversation(0)
        conversation_id = self.stored_conversation(database, raw)
        with database.session() as session:
            outcome = materialize_utterances(session, conversation_id, raw["transcriptions"])
        assert outcome.inserted == 2
        with database.session() as session:
            rows = list(session.scalars(select(Utterance).order_by(Utterance.position)))
        assert [(u.external_id, u.speaker, u.text) for u in rows] == [("1", "A", "hello"), ("2", "B", "hi")]
        assert all(u.is_realtime for u in rows)

    def test_redelivery_adds_nothing(self, database, make_conversation):
        """Redelivered children are counted as existing and not inserted again."""
        raw = make_conversation(0)
        conversation_id = self.stored_conversation(database, raw)
        with database.session() as session:
            materialize_utterances(session, conversation_id, raw["transcriptions"])
        with database.session() as session:
            again = materialize_utterances(session, conversation_id, raw["transcriptions"])
        assert again.inserted == 0
        assert again.existing == 2

    def test_bad_utterances_skipped(self, database, make_conversation):
        """Utterances without an id or time are skipped with a reason."""
        conversation_id = self.stored_conversation(database, make_conversation(0))
        items = [
            {"speaker": "A", "text": "no id", "spoken_at": "2024-03-15T08:00:00Z"},
            {"id": 2, "speaker": "B", "text": "no time"},
            {"id": 3, "speaker": "C", "text": "ok", "spoken_at": "2024-03-15T08:00:01Z"},
        ]
        reasons = []
        with database.session() as session:
            outcome = materialize_utterances(session, conversation_id, items, on_skip=reasons.append)
        assert outcome.inserted == 1
        assert outcome.skipped == 2
        assert "missing_required_field" in reasons[0]
        assert "invalid_timestamp" in reasons[1]
