import pytest

from consistency_oracle import ConsistencyOracle
from constraint_store import ConstraintStore
from fastdiag import FastDiag, subtract, union
from feature_model import FeatureModel


@pytest.fixture
def store():
    fm = FeatureModel("scratch")
    fm.add_features(["Root", "a", "b"])
    return ConstraintStore.build(fm)


@pytest.fixture
def oracle(store):
    return ConsistencyOracle(store)


def _is_sound_and_minimal(oracle, diagnosis, candidates, background):
    remaining = subtract(candidates, diagnosis)
    if not oracle.is_consistent(union(background, remaining)):
        return False
    for c in diagnosis:
        smaller = subtract(candidates, subtract(diagnosis, [c]))
        if oracle.is_consistent(union(background, smaller)):
            return False
    return True


def test_set_helpers_keep_order(store):
    c1, c2, c3 = (store.new_constraint(store.lookup(n)) for n in ("Root", "a", "b"))
    assert subtract([c3, c1, c2], [c1]) == [c3, c2]
    assert union([c2, c1], [c1, c3]) == [c2, c1, c3]


def test_nothing_to_diagnose(store, oracle):
    a = store.lookup("a")
    fastdiag = FastDiag(oracle)
    assert fastdiag.find_diagnosis([], []) == []
    assert fastdiag.find_diagnosis([store.new_constraint(a)], []) == []


def test_inconsistent_background_gives_no_diagnosis(store, oracle):
    a, b = store.lookup("a"), store.lookup("b")
    background = [store.new_constraint(a), store.new_constraint(~a)]
    assert FastDiag(oracle).find_diagnosis([store.new_constraint(b)], background) == []


def test_single_conflict(store, oracle):
    a, b = store.lookup("a"), store.lookup("b")
    c1 = store.new_constraint(a)
    c2 = store.new_constraint(a.implies(b))
    c3 = store.new_constraint(~b)
    candidates = [c1, c2, c3]

    diagnosis = FastDiag(oracle).find_diagnosis(candidates, [])

    assert diagnosis == [c1]
    assert _is_sound_and_minimal(oracle, diagnosis, candidates, [])


def test_two_independent_conflicts(store, oracle):
    a, b = store.lookup("a"), store.lookup("b")
    c1, c2 = store.new_constraint(a), store.new_constraint(~a)
    c3, c4 = store.new_constraint(b), store.new_constraint(~b)
    candidates = [c1, c2, c3, c4]

    diagnosis = FastDiag(oracle).find_diagnosis(candidates, [])

    assert set(diagnosis) == {c1, c3}
    assert _is_sound_and_minimal(oracle, diagnosis, candidates, [])


def test_candidate_order_picks_the_diagnosis(store, oracle):
    a = store.lookup("a")
    c1, c2 = store.new_constraint(a), store.new_constraint(~a)
    fastdiag = FastDiag(oracle)

    assert fastdiag.find_diagnosis([c1, c2], []) == [c1]
    assert fastdiag.find_diagnosis([c2, c1], []) == [c2]


def test_background_is_never_part_of_the_diagnosis(store, oracle):
    a, b = store.lookup("a"), store.lookup("b")
    background = [store.new_constraint(a)]
    c1 = store.new_constraint(a.implies(b))
    c2 = store.new_constraint(~b)

    diagnosis = FastDiag(oracle).find_diagnosis([c1, c2], background)

    assert len(diagnosis) == 1
    assert diagnosis[0] in (c1, c2)
    assert _is_sound_and_minimal(oracle, diagnosis, [c1, c2], background)


def test_store_left_at_baseline(store, oracle):
    a = store.lookup("a")
    FastDiag(oracle).find_diagnosis([store.new_constraint(a), store.new_constraint(~a)], [])
    assert store.is_at_baseline()
