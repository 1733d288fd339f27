from types import SimpleNamespace

import cpmpy as cp
import pytest
from cpmpy.solvers.solver_interface import ExitStatus

from benchmarks.feature_models import construct_dead_feature, construct_void
from consistency_oracle import AnalysisCancelled, CancellationToken, ConsistencyOracle
from constraint_store import ConstraintStore


@pytest.fixture
def store():
    return ConstraintStore.build(construct_dead_feature())


def test_empty_set_is_consistent_without_solving(store):
    oracle = ConsistencyOracle(store)
    assert oracle.is_consistent([])
    assert oracle.calls == 0


def test_baseline_consistency(store):
    oracle = ConsistencyOracle(store)
    assert oracle.is_consistent(store.ac)

    void_store = ConstraintStore.build(construct_void())
    assert not ConsistencyOracle(void_store).is_consistent(void_store.ac)


def test_perturbed_set_is_inconsistent(store):
    oracle = ConsistencyOracle(store)
    assert not oracle.is_consistent(store.ac + [store.assign("B", True)])
    assert oracle.is_consistent(store.ac + [store.assign("B", False)])
    assert oracle.calls == 2


def test_repeated_calls_agree_and_leave_store_untouched(store):
    oracle = ConsistencyOracle(store)
    constraints = store.ac + [store.assign("B", True)]
    before = store.posted

    first = oracle.is_consistent(constraints)
    second = oracle.is_consistent(constraints)

    assert first == second
    assert store.posted == before
    assert store.is_at_baseline()


def test_solver_exception_counts_as_inconsistent(store, monkeypatch):
    def broken_solve(self, *args, **kwargs):
        raise RuntimeError("engine down")

    monkeypatch.setattr(cp.Model, "solve", broken_solve)
    oracle = ConsistencyOracle(store)

    assert not oracle.is_consistent(store.ac)
    assert len(oracle.failures) == 1
    assert oracle.failures[0].reason == "exception"
    assert "engine down" in oracle.failures[0].message
    assert store.is_at_baseline()


def test_time_out_counts_as_inconsistent(store, monkeypatch):
    monkeypatch.setattr(cp.Model, "solve", lambda self, *args, **kwargs: False)
    monkeypatch.setattr(cp.Model, "status", lambda self: SimpleNamespace(exitstatus=ExitStatus.UNKNOWN))
    oracle = ConsistencyOracle(store, time_limit=0.5)

    assert not oracle.is_consistent(store.ac)
    assert [f.reason for f in oracle.failures] == ["time limit"]


def test_genuine_inconsistency_is_not_a_failure(store):
    oracle = ConsistencyOracle(store)
    assert not oracle.is_consistent(store.ac + [store.assign("B", True)])
    assert oracle.failures == []


def test_cancelled_token_aborts(store):
    token = CancellationToken()
    oracle = ConsistencyOracle(store, cancel_token=token)
    assert oracle.is_consistent(store.ac)

    token.cancel()
    assert token.cancelled
    with pytest.raises(AnalysisCancelled):
        oracle.is_consistent(store.ac)
    assert store.is_at_baseline()


def test_status_fault_counts_as_inconsistent(store, monkeypatch):
    def broken_status(self):
        raise RuntimeError("no status")

    monkeypatch.setattr(cp.Model, "status", broken_status)
    oracle = ConsistencyOracle(store)

    assert not oracle.is_consistent(store.ac + [store.assign("B", True)])
    assert [f.reason for f in oracle.failures] == ["exception"]
    assert store.is_at_baseline()


def test_model_construction_fault_counts_as_inconsistent(store, monkeypatch):
    def broken_init(self, *args, **kwargs):
        raise TypeError("bad constraint")

    monkeypatch.setattr(cp.Model, "__init__", broken_init)
    oracle = ConsistencyOracle(store)

    assert not oracle.is_consistent(store.ac)
    assert "bad constraint" in oracle.failures[0].message
