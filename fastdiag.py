"""
FastDiag
========

Divide-and-conquer computation of one inclusion-minimal diagnosis.

    FastDiag(C, B):
        if C is empty or consistent(B u C) or inconsistent(B): return {}
        return FD({}, C, B u C)

    FD(D, C = {c1..cq}, AC):
        if D != {} and consistent(AC): return {}
        if singleton(C): return C
        k = q / 2; C1 = {c1..ck}; C2 = {ck+1..cq}
        D1 = FD(C1, C2, AC - C1)
        D2 = FD(D1, C1, AC - D1)
        return D1 u D2

The candidate order decides *which* minimal diagnosis is found when several
exist, so callers pass an ordered sequence and every set operation here keeps
that order.
"""

import logging
from typing import List, Sequence

from consistency_oracle import ConsistencyOracle
from constraint_store import FMConstraint

logger = logging.getLogger(__name__)


def subtract(constraints: Sequence[FMConstraint], removed: Sequence[FMConstraint]) -> List[FMConstraint]:
    """``constraints - removed``, keeping the order of ``constraints``."""
    removed_ids = {c.id for c in removed}
    return [c for c in constraints if c.id not in removed_ids]


def union(first: Sequence[FMConstraint], second: Sequence[FMConstraint]) -> List[FMConstraint]:
    """``first u second`` in order of first appearance, without duplicates."""
    seen = set()
    result = []
    for c in list(first) + list(second):
        if c.id not in seen:
            seen.add(c.id)
            result.append(c)
    return result


class FastDiag:

    def __init__(self, oracle: ConsistencyOracle):
        self.oracle = oracle

    def find_diagnosis(self, candidates: Sequence[FMConstraint],
                       background: Sequence[FMConstraint]) -> List[FMConstraint]:
        """
        Return a minimal subset of ``candidates`` whose removal makes
        ``background u candidates`` consistent.

        Returns an empty list when there is nothing to explain: no candidates,
        an already consistent set, or a background that is inconsistent on its
        own (the defect does not originate in the candidates).
        """
        if not candidates:
            return []

        everything = union(background, candidates)
        if self.oracle.is_consistent(everything):
            return []
        if not self.oracle.is_consistent(background):
            logger.debug("Background knowledge is inconsistent on its own, no diagnosis")
            return []

        diagnosis = self._fd([], list(candidates), everything)
        logger.debug(f"FastDiag: diagnosis of size {len(diagnosis)} out of {len(candidates)} candidates")
        return diagnosis

    def _fd(self, removed: List[FMConstraint], candidates: List[FMConstraint],
            constraints: List[FMConstraint]) -> List[FMConstraint]:
        if removed and self.oracle.is_consistent(constraints):
            return []

        if len(candidates) == 1:
            return list(candidates)

        k = len(candidates) // 2
        c1 = candidates[:k]
        c2 = candidates[k:]

        d1 = self._fd(c1, c2, subtract(constraints, c1))
        d2 = self._fd(d1, c1, subtract(constraints, d1))
        return union(d1, d2)
