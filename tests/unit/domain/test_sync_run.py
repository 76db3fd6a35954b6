"""
Tests for the SyncRun state machine and its counters.
"""
import pytest

from core.domain.entities import SyncCounters, SyncRun
from core.domain.enums import SyncKind, SyncRunState
from core.domain.exceptions import InvalidStateTransitionError


PIPELINE = [
    SyncRunState.FETCHING,
    SyncRunState.PARSING,
    SyncRunState.MATCHING,
    SyncRunState.AGGREGATING,
    SyncRunState.WRITING,
]


class TestSyncRunTransitions:
    """Test run state transitions."""

    def test_new_run_is_queued(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)

        assert run.state == SyncRunState.QUEUED
        assert run.finished_at is None
        assert run.error is None

    def test_full_pipeline_then_done(self):
        run = SyncRun.start("seller-1", SyncKind.LEDGER)

        for state in PIPELINE:
            run.transition(state)
        run.transition(SyncRunState.DONE)

        assert run.state == SyncRunState.DONE
        assert run.finished_at is not None

    def test_writing_loops_back_to_fetching_per_chunk(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)
        for state in PIPELINE:
            run.transition(state)

        run.transition(SyncRunState.FETCHING)

        assert run.state == SyncRunState.FETCHING

    def test_nothing_to_fetch_goes_fetching_to_done(self):
        run = SyncRun.start("seller-1", SyncKind.ESTIMATE)
        run.transition(SyncRunState.FETCHING)
        run.transition(SyncRunState.DONE)

        assert run.state == SyncRunState.DONE

    def test_abandoned_chunk_returns_to_fetching(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)
        run.transition(SyncRunState.FETCHING)
        run.transition(SyncRunState.PARSING)
        run.transition(SyncRunState.MATCHING)

        run.transition(SyncRunState.FETCHING)

        assert run.state == SyncRunState.FETCHING

    def test_skipping_a_state_is_rejected(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)
        run.transition(SyncRunState.FETCHING)

        with pytest.raises(InvalidStateTransitionError):
            run.transition(SyncRunState.WRITING)

    def test_queued_cannot_finish_directly(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)

        with pytest.raises(InvalidStateTransitionError):
            run.transition(SyncRunState.DONE)

    @pytest.mark.parametrize("steps_taken", range(len(PIPELINE) + 1))
    def test_failed_reachable_from_any_active_state(self, steps_taken):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)
        for state in PIPELINE[:steps_taken]:
            run.transition(state)

        run.fail("boom")

        assert run.state == SyncRunState.FAILED
        assert run.error == "boom"
        assert run.finished_at is not None

    def test_terminal_states_are_final(self):
        run = SyncRun.start("seller-1", SyncKind.SETTLEMENT)
        run.fail("credentials rejected")

        with pytest.raises(InvalidStateTransitionError):
            run.transition(SyncRunState.FETCHING)
        with pytest.raises(InvalidStateTransitionError):
            run.fail("again")

    def test_terminal_flags(self):
        assert SyncRunState.DONE.is_terminal
        assert SyncRunState.FAILED.is_terminal
        assert not SyncRunState.WRITING.is_terminal


class TestSyncCounters:
    """Test run counters."""

    def test_increment(self):
        counters = SyncCounters()
        counters.increment("matched")
        counters.increment("matched", 4)

        assert counters.matched == 5

    def test_to_dict_lists_every_counter(self):
        data = SyncCounters(fetched=3).to_dict()

        assert data["fetched"] == 3
        assert set(data) == {
            "fetched", "parsed", "malformed", "transfers_skipped", "non_fee_skipped",
            "matched", "unmatched", "updated", "account_level", "errored",
            "documents_skipped", "documents_failed", "pages_failed",
        }

    def test_from_dict_ignores_unknown_keys(self):
        counters = SyncCounters.from_dict({"updated": "7", "legacy": 1})

        assert counters.updated == 7
        assert counters.fetched == 0

    def test_from_dict_none(self):
        assert SyncCounters.from_dict(None) == SyncCounters()
