import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence

from constraint_store import FMConstraint
from fastdiag import FastDiag, subtract, union

logger = logging.getLogger(__name__)


class DiagnosisLimitExceeded(Exception):
    """Enumeration hit a configured cap; ``diagnoses`` holds what was found so far."""

    def __init__(self, message: str, diagnoses: List[List[FMConstraint]]):
        super().__init__(message)
        self.diagnoses = diagnoses


@dataclass
class _Node:
    diagnosis: List[FMConstraint]
    candidates: List[FMConstraint]
    excluded: List[FMConstraint]
    depth: int


class DiagnosisEnumerator:
    """
    Breadth-first expansion of a first diagnosis into all minimal diagnoses.

    For every constraint c of a node's diagnosis, c is moved from the
    candidates into the background and FastDiag is asked for another
    diagnosis. A child is accepted only if it is non-empty, not a superset of
    an accepted diagnosis and not accepted already.

    The search is exponential in the worst case, so it is bounded by
    ``max_diagnoses``, ``max_depth`` (levels below the first diagnosis) and
    ``timeout`` (seconds); crossing a bound raises DiagnosisLimitExceeded.
    """

    def __init__(self, fastdiag: FastDiag, max_diagnoses: Optional[int] = 100,
                 max_depth: Optional[int] = None, timeout: Optional[float] = None):
        self.fastdiag = fastdiag
        self.max_diagnoses = max_diagnoses
        self.max_depth = max_depth
        self.timeout = timeout

    def all_diagnoses(self, first: Sequence[FMConstraint], candidates: Sequence[FMConstraint],
                      background: Sequence[FMConstraint]) -> List[List[FMConstraint]]:
        if not first:
            return []

        start = time.time()
        accepted: List[List[FMConstraint]] = [list(first)]
        accepted_sets: List[FrozenSet[int]] = [_ids(first)]
        frontier = deque([_Node(list(first), list(candidates), [], 0)])

        while frontier:
            node = frontier.popleft()
            for c in node.diagnosis:
                self._check_timeout(start, accepted)

                child_candidates = subtract(node.candidates, [c])
                child_excluded = node.excluded + [c]
                diagnosis = self.fastdiag.find_diagnosis(child_candidates, union(background, child_excluded))
                if not diagnosis:
                    continue

                ids = _ids(diagnosis)
                if not _is_minimal(ids, accepted_sets) or ids in accepted_sets:
                    continue

                if self.max_diagnoses is not None and len(accepted) >= self.max_diagnoses:
                    raise DiagnosisLimitExceeded(
                        f"More than {self.max_diagnoses} diagnoses", accepted)
                if self.max_depth is not None and node.depth + 1 > self.max_depth:
                    raise DiagnosisLimitExceeded(
                        f"Diagnosis enumeration exceeded depth {self.max_depth}", accepted)

                accepted.append(diagnosis)
                accepted_sets.append(ids)
                frontier.append(_Node(diagnosis, child_candidates, child_excluded, node.depth + 1))

        logger.debug(f"Enumerated {len(accepted)} diagnoses in {time.time() - start:.2f}s")
        return accepted

    def _check_timeout(self, start: float, accepted: List[List[FMConstraint]]):
        if self.timeout is not None and time.time() - start > self.timeout:
            raise DiagnosisLimitExceeded(f"Diagnosis enumeration exceeded {self.timeout}s", accepted)


def _ids(diagnosis: Sequence[FMConstraint]) -> FrozenSet[int]:
    return frozenset(c.id for c in diagnosis)


def _is_minimal(ids: FrozenSet[int], accepted_sets: List[FrozenSet[int]]) -> bool:
    return not any(ids >= other for other in accepted_sets)
