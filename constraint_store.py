"""
Constraint store
================

Translates a feature model into CPMpy boolean variables and constraints and
manages the two nested baselines used by every analysis probe:

    CF  constraints derived from relationships and cross-tree constraints
    AC  CF plus the assertion that the root feature is selected

The store keeps a *posted* set. Probes perturb it through the scoped helpers
(``probe``, ``swapped``, ``retracted``) which always hand the store back in
the state they found it, whatever way the block is left.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

import cpmpy as cp

from feature_model import (
    FeatureModel,
    FeatureModelError,
    FeatureOrder,
    Relationship,
    RelationshipType,
)

logger = logging.getLogger(__name__)


class StructuralError(FeatureModelError):
    """The model cannot be translated (unknown feature, empty group, ...)."""


class FeatureNotFoundError(FeatureModelError, KeyError):
    """A feature has no variable in the store: model and store are out of sync."""

    def __str__(self):
        return Exception.__str__(self)


class ConstraintKind(Enum):
    RELATIONSHIP = "relationship"
    CROSS_TREE = "cross-tree"
    ROOT = "root"
    ASSIGNMENT = "assignment"
    NEGATION = "negation"


@dataclass
class FMConstraint:
    """A unit of posted logic with a back-reference to its relationship."""
    id: int
    expression: Any  # CPMpy constraint object
    kind: ConstraintKind
    relationship: Optional[Relationship] = None

    @property
    def conf_rule(self) -> Optional[str]:
        return self.relationship.conf_rule if self.relationship is not None else None

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        return isinstance(other, FMConstraint) and self.id == other.id

    def __str__(self):
        return str(self.expression)


class ConstraintStore:

    def __init__(self, model: FeatureModel, feature_order: FeatureOrder = FeatureOrder.BREADTH_FIRST):
        self.model = model
        self.feature_order = feature_order
        self.variables: Dict[str, Any] = {}
        self._cf: List[FMConstraint] = []
        self._ac: List[FMConstraint] = []
        self._posted: List[FMConstraint] = []
        self._posted_ids = set()
        self._next_id = 0
        self.root_constraint: Optional[FMConstraint] = None

    @classmethod
    def build(cls, model: FeatureModel, feature_order: FeatureOrder = FeatureOrder.BREADTH_FIRST) -> "ConstraintStore":
        store = cls(model, feature_order)
        store._create_variables()
        store._create_constraints()
        store.reset_to_baseline()
        logger.info(f"Constraint store for '{model.name}': {len(store.variables)} variables, "
                    f"{len(store._cf)} constraints in CF")
        return store

    # ------------------------------------------------------------------ build

    def _create_variables(self):
        if not self.model.features:
            raise StructuralError("The feature model has no features.")
        for feature in self.model.features_in_order(self.feature_order):
            # CPMpy reserves variable names starting with IV or BV
            self.variables[feature.name] = cp.boolvar(name=f"f_{feature.name}")

        unreachable = self.model.unreachable_features()
        if unreachable:
            logger.warning(f"Features not reachable from the root {self.model.root.name}: {unreachable}")

    def _create_constraints(self):
        for relationship in self.model.all_relationships():
            relationship.constraints.clear()

        for relationship in self.model.relationships:
            for expression in self._translate_structural(relationship):
                self._cf.append(self._attach(expression, ConstraintKind.RELATIONSHIP, relationship))

        for relationship in self.model.constraints:
            expression = self._translate_cross_tree(relationship)
            self._cf.append(self._attach(expression, ConstraintKind.CROSS_TREE, relationship))

        root = self.new_constraint(self._variable_for(self.model.root.name, None), ConstraintKind.ROOT)
        self._ac = self._cf + [root]
        self.root_constraint = root

    def _attach(self, expression, kind: ConstraintKind, relationship: Relationship) -> FMConstraint:
        constraint = self.new_constraint(expression, kind, relationship)
        relationship.attach_constraint(constraint)
        return constraint

    def _variable_for(self, name: str, relationship: Optional[Relationship]):
        var = self.find_variable(name)
        if var is None:
            where = f" in {relationship.conf_rule}" if relationship is not None else ""
            raise StructuralError(f"The feature {name} does not exist in the feature model{where}!")
        return var

    def _translate_structural(self, relationship: Relationship) -> List[Any]:
        left = self._variable_for(relationship.left, relationship)
        rights = [self._variable_for(name, relationship) for name in relationship.right]

        if relationship.type == RelationshipType.MANDATORY:
            return [left == rights[0]]

        if relationship.type == RelationshipType.OPTIONAL:
            return [left.implies(rights[0])]

        if not rights:
            raise StructuralError(f"{relationship.conf_rule} has no right-side features.")

        if relationship.type == RelationshipType.OR:
            any_child = cp.any(rights)
            return [left.implies(any_child) & any_child.implies(left)]

        if relationship.type == RelationshipType.ALTERNATIVE:
            # ci <=> (parent /\ not cj for every j != i)
            expressions = []
            for i, child in enumerate(rights):
                only_child = cp.all([left] + [~other for j, other in enumerate(rights) if j != i])
                expressions.append(child.implies(only_child) & only_child.implies(child))
            return expressions

        raise StructuralError(f"{relationship.conf_rule} is not a structural relationship.")

    def _translate_cross_tree(self, relationship: Relationship):
        left = self._variable_for(relationship.left, relationship)
        right = self._variable_for(relationship.right[0], relationship)

        if relationship.type == RelationshipType.REQUIRES:
            return left.implies(right)
        if relationship.type == RelationshipType.EXCLUDES:
            return ~left | ~right
        raise StructuralError(f"{relationship.conf_rule} is not a cross-tree constraint.")

    # ---------------------------------------------------------------- queries

    @property
    def cf(self) -> List[FMConstraint]:
        return list(self._cf)

    @property
    def ac(self) -> List[FMConstraint]:
        return list(self._ac)

    @property
    def posted(self) -> List[FMConstraint]:
        return list(self._posted)

    def background(self) -> List[FMConstraint]:
        """Posted constraints that are not diagnosable (root, perturbations)."""
        cf_ids = {c.id for c in self._cf}
        return [c for c in self._posted if c.id not in cf_ids]

    def is_at_baseline(self) -> bool:
        return [c.id for c in self._posted] == [c.id for c in self._ac]

    def find_variable(self, name: str):
        return self.variables.get(name)

    def lookup(self, name: str):
        var = self.find_variable(name)
        if var is None:
            raise FeatureNotFoundError(
                f"The feature {name} has no variable in the constraint store of '{self.model.name}'"
            )
        return var

    def constraints_of(self, relationship: Relationship) -> List[FMConstraint]:
        return [c for c in self._cf if c.relationship is relationship]

    # ------------------------------------------------------- constraint makers

    def new_constraint(self, expression, kind: ConstraintKind = ConstraintKind.ASSIGNMENT,
                       relationship: Optional[Relationship] = None) -> FMConstraint:
        constraint = FMConstraint(self._next_id, expression, kind, relationship)
        self._next_id += 1
        return constraint

    def assign(self, name: str, value: bool) -> FMConstraint:
        """Perturbation constraint fixing a feature to ``value``."""
        var = self.lookup(name)
        return self.new_constraint(var if value else ~var, ConstraintKind.ASSIGNMENT)

    def negation_of(self, relationship: Relationship) -> List[FMConstraint]:
        if not relationship.is_cross_tree:
            raise ValueError(f"Only cross-tree constraints can be negated, got {relationship.conf_rule}")

        left = self.lookup(relationship.left)
        right = self.lookup(relationship.right[0])
        if relationship.type == RelationshipType.REQUIRES:
            expression = left & ~right
        else:
            expression = left & right
        return [self.new_constraint(expression, ConstraintKind.NEGATION, relationship)]

    # ---------------------------------------------------------------- posting

    def post(self, constraints: Iterable[FMConstraint]):
        for c in constraints:
            if c.id not in self._posted_ids:
                self._posted.append(c)
                self._posted_ids.add(c.id)

    def unpost(self, constraints: Iterable[FMConstraint]):
        removed = {c.id for c in constraints}
        if not removed & self._posted_ids:
            return
        self._posted = [c for c in self._posted if c.id not in removed]
        self._posted_ids -= removed

    def clear(self):
        self._posted = []
        self._posted_ids = set()

    def reset_to_baseline(self):
        self.clear()
        self.post(self._ac)

    @contextmanager
    def probe(self, *perturbation: FMConstraint) -> Iterator[List[FMConstraint]]:
        """AC plus ``perturbation`` for the duration of the block."""
        self.reset_to_baseline()
        self.post(perturbation)
        try:
            yield self.posted
        finally:
            self.reset_to_baseline()

    @contextmanager
    def swapped(self, constraints: Iterable[FMConstraint]) -> Iterator[List[FMConstraint]]:
        """Exactly ``constraints`` for the duration of the block."""
        saved = list(self._posted)
        self.clear()
        self.post(constraints)
        try:
            yield self.posted
        finally:
            self.clear()
            self.post(saved)

    @contextmanager
    def retracted(self, relationship: Relationship) -> Iterator[List[FMConstraint]]:
        """AC without ``relationship`` and with its negation posted; yields the negation."""
        group = self.constraints_of(relationship)
        self.reset_to_baseline()
        self.unpost(group)
        negation = self.negation_of(relationship)
        self.post(negation)
        try:
            yield negation
        finally:
            self.unpost(negation)
            self.post(group)
            self.reset_to_baseline()
