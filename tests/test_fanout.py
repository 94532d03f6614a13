"""
Tests for delivered-copy creation and recipient resolution.
"""

import pytest

from src.core.dao import find_copies
from src.core.fanout import DeliveryFanout, resolve_recipients
from src.core.ledger import RollbackLedger
from src.core.schema import Memo, MemoStatus, to_db_ts, utc_now


def _memo(**fields):
    now = to_db_ts(utc_now())
    defaults = dict(id="m1", sender_id="sec1", subject="Schedule", status=MemoStatus.APPROVED,
                    created_at=now, updated_at=now)
    defaults.update(fields)
    return Memo(**defaults)


@pytest.fixture
def fanout():
    return DeliveryFanout(RollbackLedger())


class TestResolveRecipients:

    def test_departments_expand_to_active_faculty(self, directory):
        assert resolve_recipients(_memo(departments=["X"])) == ["f1", "f2", "f3"]
        assert resolve_recipients(_memo(departments=["X", "Y"])) == ["f1", "f2", "f3", "f4"]

    def test_explicit_list_wins_over_departments(self, directory):
        memo = _memo(recipients=["f4", "f2"], departments=["X"])
        assert resolve_recipients(memo) == ["f4", "f2"]

    def test_sender_is_never_a_recipient(self, directory):
        assert resolve_recipients(_memo(sender_id="f2", departments=["X"])) == ["f1", "f3"]

    def test_no_audience(self, directory):
        assert resolve_recipients(_memo()) == []


class TestDeliveryFanout:

    def test_build_copy_is_detached(self, fanout):
        memo = _memo(metadata={"tags": ["ops"]}, attachments=[{"name": "a.pdf"}],
                     signatures=[{"by": "sec1"}])
        delivered = fanout.build_copy(memo, "f1", "admin1", "2025-01-01T00:00:00.000000Z")

        delivered.metadata["tags"].append("changed")
        delivered.attachments[0]["name"] = "b.pdf"

        assert memo.metadata == {"tags": ["ops"]}
        assert memo.attachments == [{"name": "a.pdf"}]
        assert delivered.id != memo.id
        assert delivered.status is MemoStatus.SENT
        assert delivered.recipient_id == "f1"
        assert delivered.original_memo_id == "m1"
        assert delivered.is_delivered_copy

    def test_create_copy_records_progress(self, fanout):
        memo = _memo()
        payload = {"memoId": memo.id, "copyIds": []}
        entry_id = fanout.ledger.open("memo_approval", "admin1", dict(payload))
        stamp = to_db_ts(utc_now())

        copy_id = fanout.create_copy(memo, "f1", "admin1", stamp, entry_id, payload)

        assert [c.id for c in find_copies(memo.id)] == [copy_id]
        assert fanout.ledger.get(entry_id).payload["copyIds"] == [copy_id]

    def test_create_copy_is_idempotent_per_recipient(self, fanout):
        memo = _memo()
        payload = {"memoId": memo.id, "copyIds": []}
        entry_id = fanout.ledger.open("memo_approval", "admin1", dict(payload))
        stamp = to_db_ts(utc_now())

        first = fanout.create_copy(memo, "f1", "admin1", stamp, entry_id, payload)
        second = fanout.create_copy(memo, "f1", "admin1", stamp, entry_id, payload)

        assert first is not None
        assert second is None
        assert len(find_copies(memo.id)) == 1
        assert payload["copyIds"] == [first]

    def test_deliver_skips_existing_copies(self, fanout):
        memo = _memo()
        payload = {"memoId": memo.id, "copyIds": []}
        entry_id = fanout.ledger.open("memo_approval", "admin1", dict(payload))
        stamp = to_db_ts(utc_now())
        fanout.create_copy(memo, "f1", "admin1", stamp, entry_id, payload)

        created = fanout.deliver(memo, ["f1", "f2"], "admin1", stamp, entry_id, payload)

        assert len(created) == 1
        assert sorted(c.recipient_id for c in find_copies(memo.id)) == ["f1", "f2"]
        assert len(fanout.ledger.get(entry_id).payload["copyIds"]) == 2
