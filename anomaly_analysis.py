"""
Feature model anomaly analysis
==============================

Drives the constraint store, the consistency oracle, FastDiag and the
diagnosis enumerator through every defect probe:

1. Void feature model
2. Dead features
3. Conditionally dead features
4. Full mandatory features
5. False optional features
6. Redundant constraints

Each probe perturbs the store (fixes one or two features, or swaps a
cross-tree constraint for its negation), asks the oracle, and when the result
is inconsistent explains it with all minimal diagnoses, rendered as the rule
strings of the relationships involved.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from consistency_oracle import CancellationToken, ConsistencyOracle, SolverFailure
from constraint_store import ConstraintStore, FMConstraint
from diagnosis_enumerator import DiagnosisEnumerator, DiagnosisLimitExceeded
from fastdiag import FastDiag
from feature_model import AnomalyType, Feature, FeatureModel, FeatureOrder

logger = logging.getLogger(__name__)

VOID_MODEL_SUBJECT = "void feature model"


class AnomalyCategory(Enum):
    VOID_MODEL = "void feature model"
    DEAD = "dead feature"
    FALSE_OPTIONAL = "false optional feature"
    CONDITIONALLY_DEAD = "conditionally dead feature"
    FULL_MANDATORY = "full mandatory feature"
    REDUNDANT = "redundant constraint"


FEATURE_TAGS = {
    AnomalyCategory.DEAD: AnomalyType.DEAD,
    AnomalyCategory.FALSE_OPTIONAL: AnomalyType.FALSE_OPTIONAL,
    AnomalyCategory.CONDITIONALLY_DEAD: AnomalyType.CONDITIONALLY_DEAD,
    AnomalyCategory.FULL_MANDATORY: AnomalyType.FULL_MANDATORY,
}


@dataclass
class AnalysisConfig:
    """Configuration for the anomaly analysis."""
    # Solver
    solver: str = "ortools"
    solver_time_limit: Optional[float] = None  # Per consistency check, seconds

    # Diagnosis enumeration caps
    max_diagnoses: Optional[int] = 100
    max_depth: Optional[int] = None
    enumeration_timeout: Optional[float] = None

    # Candidate order handed to FastDiag: most recently declared constraints first
    prefer_recent_constraints: bool = True
    feature_order: FeatureOrder = FeatureOrder.BREADTH_FIRST

    # Probes
    check_dead: bool = True
    check_conditionally_dead: bool = True
    check_full_mandatory: bool = True
    check_false_optional: bool = True
    check_redundancy: bool = True


@dataclass
class AnomalyFinding:
    category: AnomalyCategory
    subject: str
    diagnoses: List[Tuple[str, ...]] = field(default_factory=list)
    condition: Optional[str] = None  # partner feature of a conditionally dead finding
    truncated: bool = False

    @property
    def explanations(self) -> List[str]:
        return [f"Diagnosis {i}: [{','.join(rules)}]" for i, rules in enumerate(self.diagnoses, start=1)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "subject": self.subject,
            "condition": self.condition,
            "diagnoses": [list(d) for d in self.diagnoses],
            "truncated": self.truncated,
        }


@dataclass
class AnalysisReport:
    model_name: str
    consistent: bool = True
    findings_by_category: Dict[AnomalyCategory, List[AnomalyFinding]] = field(
        default_factory=lambda: {category: [] for category in AnomalyCategory})
    oracle_calls: int = 0
    solver_failures: List[SolverFailure] = field(default_factory=list)
    elapsed: float = 0.0

    def add(self, finding: AnomalyFinding):
        self.findings_by_category[finding.category].append(finding)

    def findings(self, category: AnomalyCategory) -> List[AnomalyFinding]:
        return list(self.findings_by_category[category])

    def subjects(self, category: AnomalyCategory) -> List[str]:
        return [f.subject for f in self.findings_by_category[category]]

    def finding_for(self, category: AnomalyCategory, subject: str) -> Optional[AnomalyFinding]:
        for finding in self.findings_by_category[category]:
            if finding.subject == subject:
                return finding
        return None

    @property
    def void(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.VOID_MODEL)

    @property
    def dead(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.DEAD)

    @property
    def false_optional(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.FALSE_OPTIONAL)

    @property
    def conditionally_dead(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.CONDITIONALLY_DEAD)

    @property
    def full_mandatory(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.FULL_MANDATORY)

    @property
    def redundant(self) -> List[AnomalyFinding]:
        return self.findings(AnomalyCategory.REDUNDANT)

    @property
    def has_anomalies(self) -> bool:
        return any(self.findings_by_category.values())

    def to_frame(self) -> pd.DataFrame:
        """One row per explanation (one row per finding without explanations)."""
        rows = []
        for category, findings in self.findings_by_category.items():
            for finding in findings:
                diagnoses = finding.diagnoses or [()]
                for index, rules in enumerate(diagnoses, start=1):
                    rows.append({
                        "category": category.value,
                        "subject": finding.subject,
                        "condition": finding.condition,
                        "diagnosis": index if rules else None,
                        "explanation": f"[{','.join(rules)}]" if rules else None,
                        "truncated": finding.truncated,
                    })
        columns = ["category", "subject", "condition", "diagnosis", "explanation", "truncated"]
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "consistent": self.consistent,
            "findings": {
                category.value: [f.to_dict() for f in findings]
                for category, findings in self.findings_by_category.items()
            },
            "oracle_calls": self.oracle_calls,
            "solver_failures": len(self.solver_failures),
            "elapsed": round(self.elapsed, 3),
        }


class AnomalyAnalyzer:
    """
    Runs every defect probe over one feature model.

    The constraint store is built once and shared by all probes, which run
    strictly one after another; each probe hands the store back at the AC
    baseline. ``report`` is assembled incrementally, so after an aborted run
    it still holds the results of the probes that completed.
    """

    def __init__(self, model: FeatureModel, config: Optional[AnalysisConfig] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self.model = model
        self.config = config or AnalysisConfig()
        self.store = ConstraintStore.build(model, self.config.feature_order)
        self.oracle = ConsistencyOracle(
            self.store,
            solver=self.config.solver,
            time_limit=self.config.solver_time_limit,
            cancel_token=cancel_token,
        )
        self.fastdiag = FastDiag(self.oracle)
        self.enumerator = DiagnosisEnumerator(
            self.fastdiag,
            max_diagnoses=self.config.max_diagnoses,
            max_depth=self.config.max_depth,
            timeout=self.config.enumeration_timeout,
        )
        self.report = AnalysisReport(model.name)
        self._dead_checked = False

    def run(self) -> AnalysisReport:
        start = time.time()
        self.model.clear_anomalies()
        self._dead_checked = False
        self.report = AnalysisReport(self.model.name)
        logger.info(f"=== Analyzing feature model '{self.model.name}' ===")

        try:
            self.report.consistent = self.check_consistency()

            if self.report.consistent:
                if self.config.check_dead:
                    self.check_dead_features()
                if self.config.check_conditionally_dead:
                    self.check_conditionally_dead()
                if self.config.check_full_mandatory:
                    self.check_full_mandatory()
                if self.config.check_false_optional:
                    self.check_false_optional()
                if self.config.check_redundancy:
                    self.check_redundancies()
            else:
                logger.info("Void feature model, skipping the remaining probes")
        finally:
            self.report.oracle_calls = self.oracle.calls
            self.report.solver_failures = list(self.oracle.failures)
            self.report.elapsed = time.time() - start

        logger.info(f"=== Analysis complete in {self.report.elapsed:.2f}s, "
                    f"{self.report.oracle_calls} consistency checks ===")
        return self.report

    # ---------------------------------------------------------------- probes

    def check_consistency(self) -> bool:
        logger.info("Checking consistency")
        with self.store.probe():
            if self.oracle.is_consistent(self.store.posted):
                logger.info("Consistency: ok")
                return True

            logger.info("X Void feature model")
            diagnoses, truncated = self._diagnose(self._candidates(), self.store.background())
            self._record(AnomalyCategory.VOID_MODEL, VOID_MODEL_SUBJECT, diagnoses, truncated)
        return False

    def check_dead_features(self) -> List[AnomalyFinding]:
        logger.info("Checking dead features")
        for feature in self._non_root_features():
            if self._infeasible_with((feature.name, True)):
                self._report_perturbation(AnomalyCategory.DEAD, feature, (feature.name, True))
        self._dead_checked = True
        return self.report.dead

    def check_conditionally_dead(self) -> List[AnomalyFinding]:
        logger.info("Checking conditionally dead features")
        candidates = [f for f in self._non_root_features()
                      if self.model.is_optional_feature(f) and not self._is_dead(f)]
        reported = set()

        for fi, fj in combinations(candidates, 2):
            if fi.name in reported and fj.name in reported:
                continue

            perturbation = ((fi.name, True), (fj.name, True))
            if not self._infeasible_with(*perturbation):
                continue

            logger.info(f"{fi.name} and {fj.name} cannot be selected together")
            diagnoses, truncated = self._diagnose_perturbation(*perturbation)
            for feature, partner in ((fi, fj), (fj, fi)):
                if feature.name not in reported:
                    reported.add(feature.name)
                    self._record(AnomalyCategory.CONDITIONALLY_DEAD, feature.name, diagnoses,
                                 truncated, feature=feature, condition=partner.name)
        return self.report.conditionally_dead

    def check_full_mandatory(self) -> List[AnomalyFinding]:
        logger.info("Checking full mandatory features")
        for feature in self._non_root_features():
            if self._infeasible_with((feature.name, False)):
                self._report_perturbation(AnomalyCategory.FULL_MANDATORY, feature, (feature.name, False))
        return self.report.full_mandatory

    def check_false_optional(self) -> List[AnomalyFinding]:
        logger.info("Checking false optional features")
        for feature in self._non_root_features():
            if not self.model.is_optional_feature(feature):
                continue

            # one mandatory requiring feature is enough to expose the anomaly
            parent = next((p for p in self.model.requiring_features(feature)
                           if self.model.is_mandatory_feature(p)), None)
            if parent is None:
                continue

            perturbation = ((feature.name, False), (parent.name, True))
            if self._infeasible_with(*perturbation):
                self._report_perturbation(AnomalyCategory.FALSE_OPTIONAL, feature, *perturbation)
        return self.report.false_optional

    def check_redundancies(self) -> List[AnomalyFinding]:
        logger.info("Checking redundant constraints")
        for relationship in self.model.constraints:
            with self.store.retracted(relationship):
                if self.oracle.is_consistent(self.store.posted):
                    continue

                logger.info(f"X Redundant constraint: {relationship.conf_rule}")
                group = set(self.store.constraints_of(relationship))
                candidates = [c for c in self._candidates() if c not in group]
                diagnoses, truncated = self._diagnose(candidates, self.store.background())
                self._record(AnomalyCategory.REDUNDANT, relationship.conf_rule, diagnoses, truncated)
        return self.report.redundant

    # --------------------------------------------------------------- helpers

    def _is_dead(self, feature: Feature) -> bool:
        if self._dead_checked:
            return feature.has_anomaly(AnomalyType.DEAD)
        return self._infeasible_with((feature.name, True))

    def _non_root_features(self) -> List[Feature]:
        root = self.model.root
        return [f for f in self.model.features_in_order(self.config.feature_order) if f != root]

    def _candidates(self) -> List[FMConstraint]:
        cf = self.store.cf
        if self.config.prefer_recent_constraints:
            cf.reverse()
        return cf

    def _perturbation(self, assignments: Sequence[Tuple[str, bool]]) -> List[FMConstraint]:
        return [self.store.assign(name, value) for name, value in assignments]

    def _infeasible_with(self, *assignments: Tuple[str, bool]) -> bool:
        with self.store.probe(*self._perturbation(assignments)) as posted:
            return not self.oracle.is_consistent(posted)

    def _diagnose_perturbation(self, *assignments: Tuple[str, bool]):
        with self.store.probe(*self._perturbation(assignments)):
            return self._diagnose(self._candidates(), self.store.background())

    def _report_perturbation(self, category: AnomalyCategory, feature: Feature, *assignments):
        logger.info(f"X {category.value.capitalize()}: {feature.name}")
        diagnoses, truncated = self._diagnose_perturbation(*assignments)
        self._record(category, feature.name, diagnoses, truncated, feature=feature)

    def _diagnose(self, candidates: List[FMConstraint],
                  background: List[FMConstraint]) -> Tuple[List[List[FMConstraint]], bool]:
        first = self.fastdiag.find_diagnosis(candidates, background)
        try:
            return self.enumerator.all_diagnoses(first, candidates, background), False
        except DiagnosisLimitExceeded as e:
            logger.warning(f"{e}; keeping the {len(e.diagnoses)} diagnoses found so far")
            return e.diagnoses, True

    def _record(self, category: AnomalyCategory, subject: str, diagnoses: List[List[FMConstraint]],
                truncated: bool, feature: Optional[Feature] = None, condition: Optional[str] = None):
        if feature is not None and category in FEATURE_TAGS:
            feature.tag(FEATURE_TAGS[category])

        finding = AnomalyFinding(category, subject, condition=condition, truncated=truncated)
        for diagnosis in diagnoses:
            rules = explain(diagnosis)
            if rules and rules not in finding.diagnoses:
                finding.diagnoses.append(rules)
        for line in finding.explanations:
            logger.info(f"\t{line}")
        self.report.add(finding)
        return finding


def explain(diagnosis: Sequence[FMConstraint]) -> Tuple[str, ...]:
    """Rule strings of the relationships behind ``diagnosis``, in order, without repeats."""
    rules = []
    for constraint in diagnosis:
        rule = constraint.conf_rule
        if rule is not None and rule not in rules:
            rules.append(rule)
    return tuple(rules)


def analyze(model: FeatureModel, config: Optional[AnalysisConfig] = None,
            cancel_token: Optional[CancellationToken] = None) -> AnalysisReport:
    return AnomalyAnalyzer(model, config, cancel_token).run()
