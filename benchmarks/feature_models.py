from feature_model import FeatureModel, RelationshipType


def construct_unknown_reference():
    """requires(Root, Ghost) with Ghost never declared: the store refuses to build."""
    fm = FeatureModel("unknown_reference")
    fm.add_feature("Root")
    fm.add_constraint(RelationshipType.REQUIRES, "Root", "Ghost")
    return fm


def construct_dead_feature():
    # B is optional but excluded by the mandatory A
    fm = FeatureModel("dead_feature")
    fm.add_features(["Root", "A", "B"])
    fm.add_relationship(RelationshipType.MANDATORY, "Root", "A")
    fm.add_relationship(RelationshipType.OPTIONAL, "B", "Root")
    fm.add_constraint(RelationshipType.EXCLUDES, "A", "B")
    return fm


def construct_full_mandatory():
    fm = FeatureModel("full_mandatory")
    fm.add_features(["Root", "A", "B"])
    fm.add_relationship(RelationshipType.OPTIONAL, "A", "Root")
    fm.add_constraint(RelationshipType.REQUIRES, "Root", "A")
    return fm


def construct_redundant_constraint():
    fm = FeatureModel("redundant_constraint")
    fm.add_features(["Root", "A"])
    fm.add_relationship(RelationshipType.MANDATORY, "Root", "A")
    fm.add_constraint(RelationshipType.REQUIRES, "Root", "A")
    return fm


def construct_consistent():
    fm = FeatureModel("consistent")
    fm.add_features(["Root", "A", "B"])
    fm.add_relationship(RelationshipType.OPTIONAL, "A", "Root")
    fm.add_relationship(RelationshipType.OPTIONAL, "B", "Root")
    return fm


def construct_void():
    fm = FeatureModel("void")
    fm.add_features(["Root", "A"])
    fm.add_relationship(RelationshipType.MANDATORY, "Root", "A")
    fm.add_constraint(RelationshipType.EXCLUDES, "Root", "A")
    return fm


def construct_false_optional():
    fm = FeatureModel("false_optional")
    fm.add_features(["Root", "A", "B"])
    fm.add_relationship(RelationshipType.MANDATORY, "Root", "A")
    fm.add_relationship(RelationshipType.OPTIONAL, "B", "Root")
    fm.add_constraint(RelationshipType.REQUIRES, "A", "B")
    return fm


def construct_conditionally_dead():
    fm = FeatureModel("conditionally_dead")
    fm.add_features(["Root", "A", "B"])
    fm.add_relationship(RelationshipType.OPTIONAL, "A", "Root")
    fm.add_relationship(RelationshipType.OPTIONAL, "B", "Root")
    fm.add_constraint(RelationshipType.EXCLUDES, "A", "B")
    return fm


def construct_alternative_group():
    # X requires its sibling in an alternative group, so X can never be chosen
    fm = FeatureModel("alternative_group")
    fm.add_features(["Root", "X", "Y"])
    fm.add_relationship(RelationshipType.ALTERNATIVE, "Root", ["X", "Y"])
    fm.add_constraint(RelationshipType.REQUIRES, "X", "Y")
    return fm


def construct_smartwatch():
    """
    A small product line with one defect of every kind:

    - Camera is dead (mandatory Screen excludes it)
    - GPS is false optional (mandatory Battery requires it)
    - Bluetooth, and with it Connectivity, is full mandatory
    - NFC and WiFi cannot be selected together
    - requires(Battery, Screen) is redundant (both are mandatory)
    """
    fm = FeatureModel("smartwatch")
    fm.add_features([
        "Smartwatch", "Screen", "Battery", "Connectivity", "Camera", "GPS",
        "Bluetooth", "NFC", "WiFi", "Strap", "Leather", "Metal",
    ])
    fm.add_relationship(RelationshipType.MANDATORY, "Smartwatch", "Screen")
    fm.add_relationship(RelationshipType.MANDATORY, "Smartwatch", "Battery")
    fm.add_relationship(RelationshipType.OPTIONAL, "Connectivity", "Smartwatch")
    fm.add_relationship(RelationshipType.OPTIONAL, "Camera", "Smartwatch")
    fm.add_relationship(RelationshipType.OPTIONAL, "GPS", "Smartwatch")
    fm.add_relationship(RelationshipType.OR, "Connectivity", ["Bluetooth", "NFC", "WiFi"])
    fm.add_relationship(RelationshipType.OPTIONAL, "Strap", "Smartwatch")
    fm.add_relationship(RelationshipType.ALTERNATIVE, "Strap", ["Leather", "Metal"])

    fm.add_constraint(RelationshipType.EXCLUDES, "Screen", "Camera")
    fm.add_constraint(RelationshipType.REQUIRES, "Battery", "GPS")
    fm.add_constraint(RelationshipType.REQUIRES, "Smartwatch", "Bluetooth")
    fm.add_constraint(RelationshipType.EXCLUDES, "NFC", "WiFi")
    fm.add_constraint(RelationshipType.REQUIRES, "Battery", "Screen")
    return fm


BENCHMARKS = {
    "unknown_reference": construct_unknown_reference,
    "dead_feature": construct_dead_feature,
    "full_mandatory": construct_full_mandatory,
    "redundant_constraint": construct_redundant_constraint,
    "consistent": construct_consistent,
    "void": construct_void,
    "false_optional": construct_false_optional,
    "conditionally_dead": construct_conditionally_dead,
    "alternative_group": construct_alternative_group,
    "smartwatch": construct_smartwatch,
}
