"""Tests for the transaction guard and the atomic()/run_in_transaction helpers."""

import pytest

from kiln.errors import TransactionNotAllowed
from kiln.runtime.context import Kiln
from kiln.runtime.resolver import resolve, unsafe_for_transaction
from kiln.runtime.transaction import (
    TransactionAborted,
    TransactionConflict,
    atomic,
    in_transaction,
    run_in_transaction,
)


@pytest.fixture
def tx_graph(registry):
    registry.define_raw("user-id")
    registry.define_derived(
        "normalized-id",
        ["user-id"],
        lambda lookup: lookup("user-id").lower(),
        transaction_allowed=True,
    )
    registry.define_derived("send-email!", ["normalized-id"], lambda lookup: "sent")
    registry.define_derived(
        "greeting",
        ["normalized-id"],
        lambda lookup: "hi " + lookup("normalized-id"),
        transaction_allowed=True,
    )
    registry.define_derived(
        "careless",
        ["send-email!"],
        lambda lookup: lookup("send-email!"),
        transaction_allowed=True,
    )
    return registry


class TestAtomic:
    def test_in_transaction_tracks_nesting(self):
        assert not in_transaction()
        with atomic():
            assert in_transaction()
            with atomic():
                assert in_transaction()
            assert in_transaction()
        assert not in_transaction()

    def test_in_transaction_reset_after_exception(self):
        with pytest.raises(ValueError):
            with atomic():
                raise ValueError("boom")
        assert not in_transaction()


class TestGuard:
    def test_unsafe_node_refused_inside_atomic(self, tx_graph):
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")

        with atomic():
            with pytest.raises(TransactionNotAllowed) as exc_info:
                resolve(kiln, "send-email!")

        assert exc_info.value.name == "send-email!"
        assert exc_info.value.offending == ["send-email!"]
        assert kiln.peek("send-email!") is None

    def test_same_node_resolves_outside_atomic(self, tx_graph):
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")

        assert resolve(kiln, "send-email!") == "sent"

    def test_safe_chain_allowed_inside_atomic(self, tx_graph):
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")

        with atomic():
            assert resolve(kiln, "greeting") == "hi alice"
            assert resolve(kiln, "user-id") == "ALICE"

    def test_safe_node_with_unsafe_dependency_refused(self, tx_graph):
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")

        with atomic():
            with pytest.raises(TransactionNotAllowed) as exc_info:
                resolve(kiln, "careless")

        assert exc_info.value.offending == ["send-email!"]

    def test_memoized_value_still_guarded(self, tx_graph):
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")
        resolve(kiln, "send-email!")

        with atomic():
            with pytest.raises(TransactionNotAllowed):
                resolve(kiln, "send-email!")

    def test_guard_disabled_per_kiln(self, tx_graph):
        kiln = Kiln(tx_graph, guard_transactions=False)
        kiln.supply("user-id", "ALICE")

        with atomic():
            assert resolve(kiln, "send-email!") == "sent"

    def test_guard_disabled_by_environment(self, tx_graph, monkeypatch):
        monkeypatch.setenv("KILN_GUARD_TRANSACTIONS", "false")
        kiln = Kiln(tx_graph)
        kiln.supply("user-id", "ALICE")

        assert not kiln.guard_transactions
        with atomic():
            assert resolve(kiln, "send-email!") == "sent"

    def test_custom_transaction_predicate(self, tx_graph):
        inside = {"value": True}
        kiln = Kiln(tx_graph, transaction_probe=lambda: inside["value"])
        kiln.supply("user-id", "ALICE")

        with pytest.raises(TransactionNotAllowed):
            resolve(kiln, "send-email!")
        inside["value"] = False
        assert resolve(kiln, "send-email!") == "sent"


def test_unsafe_for_transaction_reports_unknown_deps(registry):
    node = registry.define_derived("n", ["ghost"], lambda lookup: 1, transaction_allowed=True)

    assert unsafe_for_transaction(registry, node) == ["ghost"]


class TestRunInTransaction:
    def test_retries_until_no_conflict(self):
        attempts = []

        def body():
            attempts.append(in_transaction())
            if len(attempts) < 3:
                raise TransactionConflict("write skew")
            return "done"

        assert run_in_transaction(body, retries=3) == "done"
        assert attempts == [True, True, True]

    def test_aborts_after_retries(self):
        def body():
            raise TransactionConflict("always")

        with pytest.raises(TransactionAborted) as exc_info:
            run_in_transaction(body, retries=2)

        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_conflict) == "always"

    def test_other_errors_propagate(self):
        def body():
            raise ValueError("bug")

        with pytest.raises(ValueError):
            run_in_transaction(body)
        assert not in_transaction()

    def test_kiln_in_body_refuses_unsafe_node_each_attempt(self, tx_graph):
        refused = []

        def body():
            kiln = Kiln(tx_graph)
            kiln.supply("user-id", "ALICE")
            try:
                resolve(kiln, "send-email!")
            except TransactionNotAllowed:
                refused.append(True)
            if len(refused) < 2:
                raise TransactionConflict("retry")
            return resolve(kiln, "greeting")

        assert run_in_transaction(body) == "hi alice"
        assert refused == [True, True]
