"""
Tests for repository classes.
"""

from datetime import timedelta

from threadsync.db.repositories import (
    MessageRepository,
    ShareLinkRepository,
    ThreadRepository,
)
from threadsync.models.db import MessageRole, MessageStatus, utc_now


class TestThreadRepository:
    """Tests for ThreadRepository."""

    def test_create_and_get(self, db_session):
        repo = ThreadRepository(db_session)

        thread = repo.create(owner_id="alice", title="Hello")

        assert repo.get(thread.id) is thread
        assert repo.exists(thread.id)
        assert not repo.exists("missing")

    def test_list_by_owner_with_limit(self, db_session):
        repo = ThreadRepository(db_session)
        for i in range(3):
            repo.create(owner_id="alice", title=f"T{i}")
        repo.create(owner_id="bob")

        assert len(repo.list_by_owner("alice")) == 3
        assert len(repo.list_by_owner("alice", limit=2)) == 2
        assert repo.count() == 4

    def test_clear_origin_references(self, db_session):
        repo = ThreadRepository(db_session)
        origin = repo.create(owner_id="alice")
        branch = repo.create(owner_id="alice", origin_thread_id=origin.id)

        updated = repo.clear_origin_references(origin.id)
        db_session.expire_all()

        assert updated == 1
        assert repo.get(branch.id).origin_thread_id is None


class TestMessageRepository:
    """Tests for MessageRepository ordering helpers."""

    def _thread(self, db_session):
        return ThreadRepository(db_session).create(owner_id="alice")

    def test_next_sequence(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)

        assert repo.next_sequence(thread.id) == 1
        repo.append(thread.id, role=MessageRole.USER, content="a")
        repo.append(thread.id, role=MessageRole.USER, content="b")

        assert repo.next_sequence(thread.id) == 3

    def test_append_never_goes_back_in_time(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        future = utc_now() + timedelta(hours=1)
        first = repo.create(
            thread_id=thread.id,
            role=MessageRole.USER,
            content="from a fast clock",
            sequence=1,
            created_at=future,
        )

        second = repo.append(thread.id, role=MessageRole.ASSISTANT, content="reply")

        assert second.created_at >= future
        assert second.sequence == 2
        assert [m.id for m in repo.list_for_thread(thread.id)] == [first.id, second.id]

    def test_sequence_breaks_timestamp_ties(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        same_time = utc_now()
        # Inserted out of sequence order on purpose
        later = repo.create(
            thread_id=thread.id,
            role=MessageRole.ASSISTANT,
            content="second",
            sequence=2,
            created_at=same_time,
        )
        earlier = repo.create(
            thread_id=thread.id,
            role=MessageRole.USER,
            content="first",
            sequence=1,
            created_at=same_time,
        )

        assert [m.id for m in repo.list_for_thread(thread.id)] == [earlier.id, later.id]
        assert repo.trailing_ids(earlier) == [later.id]
        assert [m.id for m in repo.list_up_to(earlier)] == [earlier.id]

    def test_trailing_ids_inclusive(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        messages = [
            repo.append(thread.id, role=MessageRole.USER, content=str(i))
            for i in range(4)
        ]

        exclusive = repo.trailing_ids(messages[1])
        inclusive = repo.trailing_ids(messages[1], inclusive=True)

        assert set(exclusive) == {messages[2].id, messages[3].id}
        assert set(inclusive) == {messages[1].id, messages[2].id, messages[3].id}

    def test_delete_by_ids(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        a = repo.append(thread.id, role=MessageRole.USER, content="a")
        b = repo.append(thread.id, role=MessageRole.USER, content="b")

        assert repo.delete_by_ids([]) == 0
        assert repo.delete_by_ids([a.id]) == 1
        assert [m.id for m in repo.list_for_thread(thread.id)] == [b.id]

    def test_find_live_generation(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        repo.append(thread.id, role=MessageRole.USER, content="hi")

        assert repo.find_live_generation(thread.id) is None

        live = repo.append(
            thread.id,
            role=MessageRole.ASSISTANT,
            content="",
            status=MessageStatus.STREAMING,
        )

        assert repo.find_live_generation(thread.id).id == live.id
        stale_cutoff = utc_now() + timedelta(minutes=5)
        assert repo.find_live_generation(thread.id, active_since=stale_cutoff) is None

    def test_version_increments_on_update(self, db_session):
        thread = self._thread(db_session)
        repo = MessageRepository(db_session)
        message = repo.append(thread.id, role=MessageRole.USER, content="a")
        initial = message.version

        repo.update(message, content="b")

        assert message.version == initial + 1


class TestShareLinkRepository:
    """Tests for ShareLinkRepository."""

    def test_delete_by_message_ids(self, db_session):
        thread = ThreadRepository(db_session).create(owner_id="alice")
        messages = MessageRepository(db_session)
        first = messages.append(thread.id, role=MessageRole.USER, content="a")
        second = messages.append(thread.id, role=MessageRole.USER, content="b")
        repo = ShareLinkRepository(db_session)
        for token, cutoff in (("t1", first), ("t2", second)):
            repo.create(
                token=token,
                thread_id=thread.id,
                owner_id="alice",
                shared_up_to_message_id=cutoff.id,
            )

        assert repo.delete_by_message_ids([second.id]) == 1
        assert [s.token for s in repo.list_by_owner("alice")] == ["t1"]
        assert repo.delete_by_thread(thread.id) == 1
