"""Tests for undo bookkeeping."""

from __future__ import annotations

import pytest

from atlas.agent.tool_base import FailureReason, Outcome
from atlas.history.undo import ActionRecord, UndoManager, summarize_undo
from atlas.logs.logger import JsonlLogger


def _record(name: str, log: list[str], *, reversible: bool = True, ts: float = 0.0, fail: bool = False):
    def reverse():
        if fail:
            return Outcome.fail(f"could not reverse {name}")
        log.append(name)
        return None

    return ActionRecord.create(
        kind="test",
        description=name,
        target=name,
        reverse_procedure=reverse if reversible else None,
        timestamp=ts,
    )


@pytest.fixture
def log() -> list[str]:
    return []


@pytest.fixture
def undo(log) -> UndoManager:
    manager = UndoManager(retention=10)
    for i, name in enumerate(("A", "B", "C"), start=1):
        manager.record(_record(name, log, ts=float(i)))
    return manager


class TestRecords:
    def test_reversible_needs_procedure(self):
        with pytest.raises(ValueError):
            ActionRecord(id="x", timestamp=0, kind="k", target=None, description="d", is_reversible=True)

    def test_most_recent_first(self, undo):
        assert [r.description for r in undo.list_recent()] == ["C", "B", "A"]

    def test_retention(self, log):
        manager = UndoManager(retention=2)
        for i, name in enumerate("ABC"):
            manager.record(_record(name, log, ts=float(i)))
        assert [r.description for r in manager.list_recent()] == ["C", "B"]


class TestUndoLast:
    @pytest.mark.asyncio
    async def test_reverses_newest(self, undo, log):
        outcome = await undo.undo_last()
        assert outcome.success
        assert outcome.message == "Undid: C."
        assert log == ["C"]
        assert [r.description for r in undo.list_recent()] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_nothing_to_undo(self):
        outcome = await UndoManager().undo_last()
        assert outcome.failure_reason == FailureReason.NOTHING_TO_UNDO

    @pytest.mark.asyncio
    async def test_only_permanent_actions(self, log):
        manager = UndoManager()
        manager.record(_record("Deleted report.pdf", log, reversible=False))
        outcome = await manager.undo_last()
        assert outcome.failure_reason == FailureReason.NOT_REVERSIBLE
        assert "Cannot undo" in outcome.message
        assert len(manager) == 1

    @pytest.mark.asyncio
    async def test_skips_permanent_and_says_so(self, undo, log):
        undo.record(_record("Deleted x", log, reversible=False, ts=4.0))
        outcome = await undo.undo_last()
        assert outcome.success
        assert log == ["C"]
        assert "Cannot undo \"Deleted x\"" in outcome.message
        assert undo.list_recent()[0].description == "Deleted x"

    @pytest.mark.asyncio
    async def test_failed_reversal_keeps_record(self, log):
        manager = UndoManager()
        manager.record(_record("A", log, ts=1.0))
        manager.record(_record("B", log, ts=2.0, fail=True))
        outcome = await manager.undo_last()
        assert not outcome.success
        assert "B" in outcome.message
        assert [r.description for r in manager.list_recent()] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_raising_reversal(self):
        def reverse():
            raise OSError("disk gone")

        manager = UndoManager()
        manager.record(ActionRecord.create("k", "Moved x", reverse_procedure=reverse))
        outcome = await manager.undo_last()
        assert not outcome.success
        assert "disk gone" in outcome.message

    @pytest.mark.asyncio
    async def test_async_reversal(self):
        async def reverse():
            return Outcome.ok("Put it back.")

        manager = UndoManager()
        manager.record(ActionRecord.create("k", "Moved x", reverse_procedure=reverse))
        assert (await manager.undo_last()).message == "Put it back."


class TestUndoN:
    @pytest.mark.asyncio
    async def test_two_of_three(self, undo, log):
        outcomes = await undo.undo_n(2)
        assert [o.success for o in outcomes] == [True, True]
        assert log == ["C", "B"]
        assert [r.description for r in undo.list_recent()] == ["A"]

    @pytest.mark.asyncio
    async def test_more_than_available(self, undo, log):
        outcomes = await undo.undo_n(10)
        assert len(outcomes) == 3
        assert log == ["C", "B", "A"]
        assert len(undo) == 0

    @pytest.mark.asyncio
    async def test_stops_at_permanent(self, log):
        manager = UndoManager()
        manager.record(_record("A", log, ts=1.0))
        manager.record(_record("Deleted x", log, reversible=False, ts=2.0))
        manager.record(_record("C", log, ts=3.0))
        outcomes = await manager.undo_n(3)
        assert [o.success for o in outcomes] == [True, False]
        assert outcomes[1].failure_reason == FailureReason.NOT_REVERSIBLE
        assert log == ["C"]
        assert [r.description for r in manager.list_recent()] == ["Deleted x", "A"]

    @pytest.mark.asyncio
    async def test_empty(self):
        outcomes = await UndoManager().undo_n(3)
        assert outcomes[0].failure_reason == FailureReason.NOTHING_TO_UNDO


class TestUndoItem:
    @pytest.mark.asyncio
    async def test_reverses_by_ordinal(self, undo, log):
        outcome = await undo.undo_item(2)
        assert outcome.success
        assert log == ["B"]
        assert [r.description for r in undo.list_recent()] == ["C", "A"]

    @pytest.mark.asyncio
    async def test_out_of_range(self, undo):
        outcome = await undo.undo_item(7)
        assert outcome.failure_reason == FailureReason.NOTHING_TO_UNDO
        assert "#7" in outcome.message


class TestSummary:
    def test_all_succeeded(self):
        result = summarize_undo([Outcome.ok("Undid: C."), Outcome.ok("Undid: B.")], 2)
        assert result.success
        assert result.message.startswith("Undid 2 actions.")

    def test_partial(self):
        outcomes = [Outcome.ok("Undid: C."), Outcome.fail("Cannot undo x", FailureReason.NOT_REVERSIBLE)]
        result = summarize_undo(outcomes, 3)
        assert not result.success
        assert "Undid 1 of 3 action" in result.message
        assert "Cannot undo x" in result.message

    def test_fewer_than_requested(self):
        result = summarize_undo([Outcome.ok("Undid: A.")], 5)
        assert "everything in the history" in result.message


class TestPersistence:
    @pytest.mark.asyncio
    async def test_reload_is_not_reversible(self, undo, tmp_path):
        path = tmp_path / "undo.json"
        undo.save(path)

        restored = UndoManager(persist_path=path)
        assert restored.load() == 3
        records = restored.list_recent()
        assert [r.description for r in records] == ["C", "B", "A"]
        assert not any(r.is_reversible for r in records)
        outcome = await restored.undo_last()
        assert outcome.failure_reason == FailureReason.NOT_REVERSIBLE

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "undo.json"
        path.write_text("[[[", encoding="utf-8")
        assert UndoManager(persist_path=path).load() == 0


class TestAudit:
    @pytest.mark.asyncio
    async def test_undo_is_logged(self, log, tmp_path):
        audit = JsonlLogger(str(tmp_path / "audit.jsonl"))
        manager = UndoManager(audit=audit)
        manager.record(_record("A", log))
        await manager.undo_last()
        text = (tmp_path / "audit.jsonl").read_text(encoding="utf-8")
        assert '"event": "undo"' in text
        assert '"success": true' in text
