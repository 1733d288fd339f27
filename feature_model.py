"""
Feature model
=============

In-memory representation of a feature model: an ordered list of boolean
features, the structural relationships that form the feature tree and the
cross-tree constraints (requires / excludes).

Relationship direction follows the rule notation used throughout the analysis
reports:

    mandatory(parent, child)
    optional(child, parent)
    or(parent, child1,child2,...)
    alternative(parent, child1,child2,...)
    requires(a, b)
    excludes(a, b)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

import networkx as nx

logger = logging.getLogger(__name__)


class FeatureModelError(Exception):
    """Raised when a feature model is malformed."""


class RelationshipType(Enum):
    MANDATORY = "mandatory"
    OPTIONAL = "optional"
    ALTERNATIVE = "alternative"
    OR = "or"
    REQUIRES = "requires"
    EXCLUDES = "excludes"


STRUCTURAL_TYPES = (
    RelationshipType.MANDATORY,
    RelationshipType.OPTIONAL,
    RelationshipType.ALTERNATIVE,
    RelationshipType.OR,
)
CROSS_TREE_TYPES = (RelationshipType.REQUIRES, RelationshipType.EXCLUDES)


class AnomalyType(Enum):
    DEAD = "dead"
    FALSE_OPTIONAL = "false optional"
    CONDITIONALLY_DEAD = "conditionally dead"
    FULL_MANDATORY = "full mandatory"


class FeatureOrder(Enum):
    """Order in which features are visited by the analysis."""
    BREADTH_FIRST = "bf"
    DEPTH_FIRST = "df"


@dataclass
class Feature:
    name: str
    anomalies: Set[AnomalyType] = field(default_factory=set)

    def has_anomaly(self, anomaly: AnomalyType) -> bool:
        return anomaly in self.anomalies

    def tag(self, anomaly: AnomalyType):
        self.anomalies.add(anomaly)

    def __hash__(self):
        return hash(self.name)

    def __eq__(self, other):
        return isinstance(other, Feature) and self.name == other.name

    def __str__(self):
        return self.name


@dataclass
class Relationship:
    """A structural relationship or a cross-tree constraint.

    The rule string (``conf_rule``) identifies the relationship in every
    explanation. ``constraints`` holds back-references to the solver
    constraints produced for it when a constraint store is built.
    """
    type: RelationshipType
    left: str
    right: List[str]
    constraints: List[Any] = field(default_factory=list, repr=False)

    @property
    def conf_rule(self) -> str:
        if self.type in (RelationshipType.ALTERNATIVE, RelationshipType.OR):
            return f"{self.type.value}({self.left}, {','.join(self.right)})"
        return f"{self.type.value}({self.left}, {self.right[0]})"

    @property
    def is_cross_tree(self) -> bool:
        return self.type in CROSS_TREE_TYPES

    def is_type(self, rel_type: RelationshipType) -> bool:
        return self.type == rel_type

    def belongs_to_left_side(self, feature: str) -> bool:
        return self.left == str(feature)

    def belongs_to_right_side(self, feature: str) -> bool:
        return str(feature) in self.right

    def attach_constraint(self, constraint: Any):
        self.constraints.append(constraint)

    def __hash__(self):
        return id(self)

    def __eq__(self, other):
        return self is other

    def __str__(self):
        return self.conf_rule


class FeatureModel:
    """Features, structural relationships and cross-tree constraints.

    The first feature added is the root. Features are kept in declaration
    (breadth-first) order; a depth-first order is derived from the feature
    tree on demand.
    """

    def __init__(self, name: Optional[str] = None):
        self._name = name
        self.features: List[Feature] = []
        self.relationships: List[Relationship] = []
        self.constraints: List[Relationship] = []
        self._by_name: Dict[str, Feature] = {}

    @property
    def name(self) -> str:
        if self._name:
            return self._name
        return self.root.name if self.features else ""

    @property
    def root(self) -> Feature:
        if not self.features:
            raise FeatureModelError("The feature model has no features.")
        return self.features[0]

    def add_feature(self, name: str) -> Feature:
        if not name or not name.strip():
            raise FeatureModelError("The feature name can't be blank.")
        if name in self._by_name:
            raise FeatureModelError(
                f"The feature name {name.upper()} is used many times in the feature model. "
                f"The feature name must be unique."
            )
        feature = Feature(name)
        self.features.append(feature)
        self._by_name[name] = feature
        return feature

    def add_features(self, names: Sequence[str]):
        for name in names:
            self.add_feature(name)

    def get_feature(self, name: str) -> Optional[Feature]:
        return self._by_name.get(name)

    @property
    def num_features(self) -> int:
        return len(self.features)

    def add_relationship(self, rel_type: RelationshipType, left: str, right) -> Relationship:
        if rel_type not in STRUCTURAL_TYPES:
            raise FeatureModelError(f"{rel_type.value} is not a structural relationship type.")
        relationship = Relationship(rel_type, left, _as_list(right))
        _check_arity(relationship)
        self.relationships.append(relationship)
        return relationship

    def add_constraint(self, rel_type: RelationshipType, left: str, right) -> Relationship:
        if rel_type not in CROSS_TREE_TYPES:
            raise FeatureModelError(f"{rel_type.value} is not a cross-tree constraint type.")
        constraint = Relationship(rel_type, left, _as_list(right))
        _check_arity(constraint)
        self.constraints.append(constraint)
        return constraint

    def all_relationships(self) -> List[Relationship]:
        return self.relationships + self.constraints

    def count_relationships(self, rel_type: RelationshipType) -> int:
        pool = self.constraints if rel_type in CROSS_TREE_TYPES else self.relationships
        return sum(1 for r in pool if r.is_type(rel_type))

    def is_mandatory_feature(self, feature) -> bool:
        name = str(feature)
        return any(
            r.is_type(RelationshipType.MANDATORY) and r.belongs_to_right_side(name)
            for r in self.relationships
        )

    def is_optional_feature(self, feature) -> bool:
        name = str(feature)
        for r in self.relationships:
            if r.is_type(RelationshipType.OPTIONAL) and r.belongs_to_left_side(name):
                return True
            if r.type in (RelationshipType.OR, RelationshipType.ALTERNATIVE) \
                    and r.belongs_to_right_side(name):
                return True
        return False

    def requiring_features(self, feature) -> List[Feature]:
        """Left sides of the requires constraints whose right side is ``feature``."""
        name = str(feature)
        parents = []
        for r in self.constraints:
            if r.is_type(RelationshipType.REQUIRES) and r.belongs_to_right_side(name):
                parent = self.get_feature(r.left)
                if parent is not None:
                    parents.append(parent)
        return parents

    def feature_tree(self) -> nx.DiGraph:
        """Parent -> child graph of the structural relationships."""
        tree = nx.DiGraph()
        tree.add_nodes_from(f.name for f in self.features)
        for r in self.relationships:
            if r.is_type(RelationshipType.OPTIONAL):
                tree.add_edge(r.right[0], r.left, relationship=r)
            else:
                for child in r.right:
                    tree.add_edge(r.left, child, relationship=r)
        return tree

    def unreachable_features(self) -> List[str]:
        if not self.features:
            return []
        reachable = nx.descendants(self.feature_tree(), self.root.name) | {self.root.name}
        return [f.name for f in self.features if f.name not in reachable]

    def features_in_order(self, order: FeatureOrder = FeatureOrder.BREADTH_FIRST) -> List[Feature]:
        if order == FeatureOrder.BREADTH_FIRST or not self.features:
            return list(self.features)

        tree = self.feature_tree()
        visited = list(nx.dfs_preorder_nodes(tree, source=self.root.name))
        seen = set(visited)
        # features hanging outside the tree keep their declaration order
        visited += [f.name for f in self.features if f.name not in seen]
        return [self._by_name[name] for name in visited if name in self._by_name]

    def clear_anomalies(self):
        for feature in self.features:
            feature.anomalies.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "features": [f.name for f in self.features],
            "relationships": [_relationship_to_dict(r) for r in self.relationships],
            "constraints": [_relationship_to_dict(c) for c in self.constraints],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureModel":
        """
        Build a feature model from a plain mapping.

        Expected shape::

            {"name": "...", "features": ["Root", "A"],
             "relationships": [{"type": "mandatory", "left": "Root", "right": ["A"]}],
             "constraints": [{"type": "requires", "left": "A", "right": "B"}]}
        """
        fm = cls(data.get("name"))
        fm.add_features(data.get("features", []))
        for entry in data.get("relationships", []):
            fm.add_relationship(_parse_type(entry), entry["left"], entry["right"])
        for entry in data.get("constraints", []):
            fm.add_constraint(_parse_type(entry), entry["left"], entry["right"])
        return fm

    def __str__(self):
        if not self.features:
            return ""
        lines = ["FEATURES:"]
        lines += [f"\t{f}" for f in self.features]
        lines.append("RELATIONSHIPS:")
        lines += [f"\t{r.conf_rule}" for r in self.relationships]
        lines.append("CONSTRAINTS:")
        lines += [f"\t{c.conf_rule}" for c in self.constraints]
        return "\n".join(lines)


def _as_list(right) -> List[str]:
    if isinstance(right, str):
        return [right]
    return list(right)


def _check_arity(relationship: Relationship):
    if relationship.type in (RelationshipType.ALTERNATIVE, RelationshipType.OR):
        return
    if len(relationship.right) != 1:
        raise FeatureModelError(
            f"A {relationship.type.value} relationship takes exactly one right-side feature, "
            f"got {relationship.right}"
        )


def _parse_type(entry: Dict[str, Any]) -> RelationshipType:
    try:
        return RelationshipType(str(entry["type"]).lower())
    except (KeyError, ValueError):
        raise FeatureModelError(f"Unknown relationship type in {entry}")


def _relationship_to_dict(r: Relationship) -> Dict[str, Any]:
    return {"type": r.type.value, "left": r.left, "right": list(r.right)}
