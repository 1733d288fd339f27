import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

import cpmpy as cp
from cpmpy.solvers.solver_interface import ExitStatus

from constraint_store import ConstraintStore, FMConstraint

logger = logging.getLogger(__name__)


class AnalysisCancelled(Exception):
    """The caller asked to abort the running analysis."""


class CancellationToken:

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise AnalysisCancelled("Analysis cancelled by the caller")


@dataclass
class SolverFailure:
    """An engine fault during a consistency check (counted as inconsistent)."""
    reason: str
    message: str
    num_constraints: int


class ConsistencyOracle:
    """
    Stateless consistency check over an arbitrary constraint subset.

    Each call posts exactly the given constraints into the store, runs the
    solver once and hands the store back unchanged. Solver exceptions and
    time-outs are reported as inconsistent and recorded in ``failures``.
    """

    def __init__(self, store: ConstraintStore, solver: str = "ortools",
                 time_limit: Optional[float] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self.store = store
        self.solver = solver
        self.time_limit = time_limit
        self.cancel_token = cancel_token
        self.calls = 0
        self.solve_time = 0.0
        self.failures: List[SolverFailure] = []

    def is_consistent(self, constraints: Iterable[FMConstraint]) -> bool:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

        with self.store.swapped(constraints) as posted:
            if not posted:
                return True

            self.calls += 1
            start = time.time()
            try:
                model = cp.Model([c.expression for c in posted])
                feasible = model.solve(solver=self.solver, time_limit=self.time_limit)
                timed_out = not feasible and model.status().exitstatus == ExitStatus.UNKNOWN
            except Exception as e:
                self._record_failure("exception", f"{type(e).__name__}: {e}", len(posted))
                return False
            finally:
                self.solve_time += time.time() - start

            if timed_out:
                self._record_failure("time limit", f"No answer within {self.time_limit}s", len(posted))
                return False

            logger.debug(f"Oracle call {self.calls}: {len(posted)} constraints -> "
                         f"{'consistent' if feasible else 'inconsistent'}")
            return bool(feasible)

    def _record_failure(self, reason: str, message: str, num_constraints: int):
        failure = SolverFailure(reason, message, num_constraints)
        self.failures.append(failure)
        logger.warning(f"Solver failure ({reason}) on {num_constraints} constraints: {message}. "
                       f"Treating the set as inconsistent.")
