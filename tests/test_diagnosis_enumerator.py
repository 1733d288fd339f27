from itertools import count
from types import SimpleNamespace

import pytest

import diagnosis_enumerator
from consistency_oracle import ConsistencyOracle
from constraint_store import ConstraintStore
from diagnosis_enumerator import DiagnosisEnumerator, DiagnosisLimitExceeded
from fastdiag import FastDiag
from feature_model import FeatureModel


@pytest.fixture
def store():
    fm = FeatureModel("scratch")
    fm.add_features(["Root", "a", "b"])
    return ConstraintStore.build(fm)


@pytest.fixture
def fastdiag(store):
    return FastDiag(ConsistencyOracle(store))


@pytest.fixture
def two_conflicts(store):
    a, b = store.lookup("a"), store.lookup("b")
    return [store.new_constraint(a), store.new_constraint(~a),
            store.new_constraint(b), store.new_constraint(~b)]


def _as_sets(diagnoses):
    return [frozenset(c.id for c in d) for d in diagnoses]


def test_enumerates_every_combination(fastdiag, two_conflicts):
    c1, c2, c3, c4 = two_conflicts
    first = fastdiag.find_diagnosis(two_conflicts, [])

    diagnoses = DiagnosisEnumerator(fastdiag).all_diagnoses(first, two_conflicts, [])

    assert set(_as_sets(diagnoses)) == {
        frozenset({c1.id, c3.id}),
        frozenset({c1.id, c4.id}),
        frozenset({c2.id, c3.id}),
        frozenset({c2.id, c4.id}),
    }
    assert diagnoses[0] == first


def test_diagnoses_do_not_dominate_each_other(fastdiag, two_conflicts):
    first = fastdiag.find_diagnosis(two_conflicts, [])
    sets = _as_sets(DiagnosisEnumerator(fastdiag).all_diagnoses(first, two_conflicts, []))

    assert len(sets) == len(set(sets))
    for i, d1 in enumerate(sets):
        for j, d2 in enumerate(sets):
            if i != j:
                assert not d1 <= d2


def test_single_conflict_gives_singletons(store, fastdiag):
    a, b = store.lookup("a"), store.lookup("b")
    candidates = [store.new_constraint(a), store.new_constraint(a.implies(b)), store.new_constraint(~b)]
    first = fastdiag.find_diagnosis(candidates, [])

    diagnoses = DiagnosisEnumerator(fastdiag).all_diagnoses(first, candidates, [])

    assert diagnoses == [[c] for c in candidates]


def test_empty_first_diagnosis(fastdiag, two_conflicts):
    assert DiagnosisEnumerator(fastdiag).all_diagnoses([], two_conflicts, []) == []


def test_max_diagnoses_keeps_partial_result(fastdiag, two_conflicts):
    first = fastdiag.find_diagnosis(two_conflicts, [])
    enumerator = DiagnosisEnumerator(fastdiag, max_diagnoses=2)

    with pytest.raises(DiagnosisLimitExceeded) as exc_info:
        enumerator.all_diagnoses(first, two_conflicts, [])

    assert len(exc_info.value.diagnoses) == 2
    assert exc_info.value.diagnoses[0] == first


def test_cap_equal_to_the_count_is_not_exceeded(fastdiag, two_conflicts):
    first = fastdiag.find_diagnosis(two_conflicts, [])
    diagnoses = DiagnosisEnumerator(fastdiag, max_diagnoses=4).all_diagnoses(first, two_conflicts, [])
    assert len(diagnoses) == 4


def test_max_depth(fastdiag, two_conflicts):
    first = fastdiag.find_diagnosis(two_conflicts, [])
    with pytest.raises(DiagnosisLimitExceeded) as exc_info:
        DiagnosisEnumerator(fastdiag, max_depth=0).all_diagnoses(first, two_conflicts, [])
    assert exc_info.value.diagnoses == [first]


def test_store_left_at_baseline(store, fastdiag, two_conflicts):
    first = fastdiag.find_diagnosis(two_conflicts, [])
    DiagnosisEnumerator(fastdiag).all_diagnoses(first, two_conflicts, [])
    assert store.is_at_baseline()


def test_complete_enumeration_within_depth_is_not_truncated(store, fastdiag):
    a = store.lookup("a")
    candidates = [store.new_constraint(a), store.new_constraint(~a)]
    first = fastdiag.find_diagnosis(candidates, [])

    diagnoses = DiagnosisEnumerator(fastdiag, max_depth=1).all_diagnoses(first, candidates, [])

    assert diagnoses == [[c] for c in candidates]


def test_timeout_keeps_partial_result(fastdiag, two_conflicts, monkeypatch):
    clock = count(0, 10)
    monkeypatch.setattr(diagnosis_enumerator, "time", SimpleNamespace(time=lambda: next(clock)))
    first = fastdiag.find_diagnosis(two_conflicts, [])

    with pytest.raises(DiagnosisLimitExceeded, match="5s") as exc_info:
        DiagnosisEnumerator(fastdiag, timeout=5).all_diagnoses(first, two_conflicts, [])

    assert exc_info.value.diagnoses == [first]
