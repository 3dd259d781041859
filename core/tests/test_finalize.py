"""Tests for Kiln.finalize(): cleanup selection, ordering and failure aggregation."""

import logging

import pytest

from kiln.errors import CleanupFailed, ComputationFailed, ContextClosed, KilnError
from kiln.graph.node import Outcome
from kiln.runtime.context import Kiln
from kiln.runtime.resolver import resolve


class FakeSession:
    def __init__(self, log: list[str]):
        self.log = log

    def commit(self):
        self.log.append("commit")

    def rollback(self):
        self.log.append("rollback")

    def close(self):
        self.log.append("close")


class Interrupt(BaseException):
    pass


@pytest.fixture
def db_graph(registry):
    """A ``db`` node that commits on success and rolls back on failure."""
    log: list[str] = []

    def commit_and_close(session):
        session.commit()
        session.close()

    def rollback_and_close(session):
        session.rollback()
        session.close()

    registry.define_derived(
        "db",
        [],
        lambda lookup: FakeSession(log),
        cleanup_success=commit_and_close,
        cleanup_failure=rollback_and_close,
    )
    return registry, log


class TestCleanupSelection:
    def test_success_runs_success_cleanup(self, db_graph):
        registry, log = db_graph
        kiln = Kiln(registry)
        resolve(kiln, "db")

        kiln.finalize(Outcome.SUCCESS)

        assert log == ["commit", "close"]

    def test_failed_action_rolls_back_never_commits(self, db_graph):
        registry, log = db_graph

        def save(lookup):
            lookup("db")
            raise RuntimeError("constraint violated")

        registry.define_derived("save!", ["db"], save)
        kiln = Kiln(registry)

        with pytest.raises(ComputationFailed):
            resolve(kiln, "save!")
        kiln.finalize(Outcome.FAILURE)

        assert log == ["rollback", "close"]
        assert "commit" not in log

    def test_unconditional_cleanup_runs_on_both_outcomes(self, registry):
        released = []
        registry.define_derived(
            "lock", [], lambda lookup: "L", cleanup=lambda value: released.append(value)
        )

        for outcome in (Outcome.SUCCESS, Outcome.FAILURE):
            kiln = Kiln(registry)
            resolve(kiln, "lock")
            kiln.finalize(outcome)

        assert released == ["L", "L"]

    def test_only_matching_variant_declared(self, registry):
        ran = []
        registry.define_derived(
            "audit", [], lambda lookup: 1, cleanup_failure=lambda value: ran.append("failure")
        )
        kiln = Kiln(registry)
        resolve(kiln, "audit")

        kiln.finalize(Outcome.SUCCESS)

        assert ran == []
        assert kiln.summary().cleanups == []

    def test_outcome_accepts_string(self, db_graph):
        registry, log = db_graph
        kiln = Kiln(registry)
        resolve(kiln, "db")

        kiln.finalize("failure")

        assert kiln.outcome == Outcome.FAILURE
        assert log == ["rollback", "close"]


class TestCleanupOrdering:
    def test_reverse_acquisition_order(self, registry):
        order = []
        for name in ("first", "second", "third"):
            registry.define_derived(
                name, [], lambda lookup, n=name: n, cleanup=lambda value: order.append(value)
            )
        kiln = Kiln(registry)
        for name in ("second", "first", "third"):
            resolve(kiln, name)

        kiln.finalize(Outcome.SUCCESS)

        assert order == ["third", "first", "second"]

    def test_unresolved_and_failed_nodes_have_no_cleanup(self, registry):
        ran = []

        def broken(lookup):
            raise ValueError("no connection")

        registry.define_derived("broken", [], broken, cleanup=lambda value: ran.append("broken"))
        registry.define_derived(
            "unused", [], lambda lookup: 1, cleanup=lambda value: ran.append("unused")
        )
        kiln = Kiln(registry)

        with pytest.raises(ComputationFailed):
            resolve(kiln, "broken")
        assert kiln.pending_cleanups == 0
        kiln.finalize(Outcome.FAILURE)

        assert ran == []

    def test_each_parameterized_entry_cleaned_once(self, registry):
        closed = []
        registry.define_derived(
            "conn", [], lambda lookup, host: f"conn:{host}", cleanup=closed.append
        )
        kiln = Kiln(registry)
        resolve(kiln, "conn", "a")
        resolve(kiln, "conn", "b")
        resolve(kiln, "conn", "a")

        kiln.finalize(Outcome.SUCCESS)

        assert closed == ["conn:b", "conn:a"]


class TestCleanupFailures:
    def test_all_cleanups_attempted_and_aggregated(self, registry):
        ran = []

        def fail(value):
            ran.append(value)
            raise OSError(f"cannot close {value}")

        registry.define_derived("a", [], lambda lookup: "a", cleanup=fail)
        registry.define_derived("b", [], lambda lookup: "b", cleanup=ran.append)
        registry.define_derived("c", [], lambda lookup: "c", cleanup=fail)
        kiln = Kiln(registry)
        for name in ("a", "b", "c"):
            resolve(kiln, name)

        with pytest.raises(CleanupFailed) as exc_info:
            kiln.finalize(Outcome.SUCCESS)

        assert ran == ["c", "b", "a"]
        assert [name for name, _ in exc_info.value.failures] == ["c", "a"]
        assert all(isinstance(err, OSError) for _, err in exc_info.value.failures)
        assert exc_info.value.outcome == Outcome.SUCCESS
        assert kiln.closed

    def test_failure_logged_and_summarized(self, registry, caplog):
        def fail(value):
            raise OSError("disk gone")

        registry.define_derived("file", [], lambda lookup: "f", cleanup=fail)
        kiln = Kiln(registry)
        resolve(kiln, "file")

        with caplog.at_level(logging.ERROR, logger="kiln.runtime.context"):
            with pytest.raises(CleanupFailed):
                kiln.finalize(Outcome.FAILURE)

        assert "Cleanup 'cleanup' for node 'file' failed" in caplog.text
        summary = kiln.summary()
        assert summary.cleanup_failures == ["file"]
        assert summary.cleanups[0].error == "disk gone"

    def test_interrupt_does_not_stop_remaining_cleanups(self, registry):
        ran = []

        def interrupted(value):
            ran.append(value)
            raise Interrupt()

        def fail(value):
            ran.append(value)
            raise OSError("close failed")

        registry.define_derived("a", [], lambda lookup: "a", cleanup=ran.append)
        registry.define_derived("b", [], lambda lookup: "b", cleanup=interrupted)
        registry.define_derived("c", [], lambda lookup: "c", cleanup=fail)
        kiln = Kiln(registry)
        for name in ("a", "b", "c"):
            resolve(kiln, name)

        with pytest.raises(Interrupt) as exc_info:
            kiln.finalize(Outcome.SUCCESS)

        assert ran == ["c", "b", "a"]
        assert kiln.closed
        assert kiln.summary().cleanup_failures == ["c", "b"]
        notes = getattr(exc_info.value, "__notes__", [])
        assert any("cleanup(s) failed" in note for note in notes)


class TestClosing:
    def test_finalize_twice_fails(self, db_graph):
        registry, log = db_graph
        kiln = Kiln(registry)
        resolve(kiln, "db")
        kiln.finalize(Outcome.SUCCESS)

        with pytest.raises(ContextClosed):
            kiln.finalize(Outcome.SUCCESS)
        assert log == ["commit", "close"]

    def test_finalize_during_resolution_fails(self, registry):
        errors = []

        def finalize_inside(lookup):
            try:
                lookup.kiln.finalize(Outcome.SUCCESS)
            except KilnError as e:
                errors.append(e)
            return 1

        registry.define_derived("n", [], finalize_inside)
        kiln = Kiln(registry)

        assert resolve(kiln, "n") == 1
        assert len(errors) == 1
        assert not kiln.closed

    def test_summary_records_outcome_and_nodes(self, db_graph):
        registry, _ = db_graph
        kiln = Kiln(registry, context_id="kiln-42")
        resolve(kiln, "db")
        kiln.finalize(Outcome.SUCCESS)

        summary = kiln.summary()

        assert summary.context_id == "kiln-42"
        assert summary.outcome == "success"
        assert summary.finalized_at is not None
        assert [n.node_id for n in summary.nodes] == ["db"]
        assert [(c.node_id, c.variant) for c in summary.cleanups] == [("db", "cleanup_success")]
