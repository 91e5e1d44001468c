"""Tests for the upsert reconciler."""

from __future__ import annotations

from datetime import timezone

from sqlalchemy import func, select

from lifeboard.db.models import Fact, LifelogEntry
from lifeboard.sync.normalize import FACT, LIFELOG, normalize
from lifeboard.sync.reconcile import INSERTED, UPDATED, dedupe, upsert

UTC = timezone.utc


def lifelog_record(make_lifelog, n, **extra):
    return normalize(LIFELOG, make_lifelog(n, **extra), UTC)


class TestUpsert:
    def test_insert_then_update(self, database, make_lifelog):
        """Replaying the same record updates in place instead of duplicating."""
        with database.session() as session:
            first = upsert(session, lifelog_record(make_lifelog, 1))
        assert first.outcome == INSERTED
        assert first.inserted
        assert first.revision == 1

        with database.session() as session:
            second = upsert(session, lifelog_record(make_lifelog, 1, title="Renamed"))
        assert second.outcome == UPDATED
        assert second.revision == 2
        assert second.record_id == first.record_id

        with database.session() as session:
            assert session.scalar(select(func.count()).select_from(LifelogEntry)) == 1
            entry = session.scalar(select(LifelogEntry))
            assert entry.title == "Renamed"
            assert entry.revision == 2

    def test_identical_replay_still_counts_as_update(self, database, make_lifelog):
        """An unchanged replay is reported as an update."""
        record = lifelog_record(make_lifelog, 1)
        with database.session() as session:
            upsert(session, record)
        with database.session() as session:
            assert upsert(session, record).outcome == UPDATED

    def test_overwrites_every_mutable_column(self, database, make_lifelog):
        """Updates overwrite flags and content with the new values."""
        with database.session() as session:
            upsert(session, lifelog_record(make_lifelog, 1, isStarred=True))
        with database.session() as session:
            upsert(session, lifelog_record(make_lifelog, 1, isStarred=False, markdown="edited"))
        with database.session() as session:
            entry = session.scalar(select(LifelogEntry))
            assert entry.is_starred is False
            assert entry.markdown_content == "edited"

    def test_separate_tables(self, database):
        """Each record type upserts into its own table."""
        fact = normalize(FACT, {"id": 5, "content": "Likes tea"}, UTC)
        with database.session() as session:
            assert upsert(session, fact).inserted
            assert session.scalar(select(Fact.content)) == "Likes tea"


class TestDedupe:
    def test_last_write_wins(self, make_lifelog):
        """Two records with id 42 in one batch leave one row carrying the later values."""
        records = [
            lifelog_record(make_lifelog, 0, id="42", title="first"),
            lifelog_record(make_lifelog, 1),
            lifelog_record(make_lifelog, 2, id="42", title="second"),
        ]
        kept, dropped = dedupe(records)
        assert dropped == 1
        assert [r.external_id for r in kept] == ["42", "log-1"]
        assert kept[0].values["title"] == "second"

    def test_same_id_different_types_kept(self, make_lifelog):
        """Dedupe keys on record type as well as id."""
        records = [
            lifelog_record(make_lifelog, 0, id="5"),
            normalize(FACT, {"id": 5, "content": "x"}, UTC),
        ]
        kept, dropped = dedupe(records)
        assert dropped == 0
        assert len(kept) == 2

    def test_empty(self):
        """An empty batch dedupes to nothing."""
        assert dedupe([]) == ([], 0)
