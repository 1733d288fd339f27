import json

import pandas as pd

from analyze_feature_model import load_model, main
from benchmarks.feature_models import construct_consistent


def test_dead_feature_summary(capsys):
    assert main(["--benchmark", "dead_feature"]) == 1

    out = capsys.readouterr().out
    assert "✓ Consistency: ok" in out
    assert "mandatory: 1, optional: 1, alternative: 0, or: 0, requires: 0, excludes: 1" in out
    assert "X Dead feature (1): B" in out
    assert "\tExplanation(s) for B:" in out
    assert "\t\tDiagnosis 1: [excludes(A, B)]" in out
    assert "✓ False optional feature: 0" in out


def test_redundant_summary_lists_rules(capsys):
    main(["--benchmark", "redundant_constraint"])

    out = capsys.readouterr().out
    assert "X Redundant constraint (1): " in out
    assert "\t[requires(Root, A)]" in out


def test_void_summary(capsys):
    main(["--benchmark", "void"])

    out = capsys.readouterr().out
    assert "X Void feature model" in out
    assert "Dead feature" not in out


def test_model_file_and_exports(tmp_path, capsys):
    model_path = tmp_path / "plain.json"
    model_path.write_text(json.dumps(construct_consistent().to_dict()))
    json_path = tmp_path / "report.json"
    csv_path = tmp_path / "report.csv"

    assert main(["--model", str(model_path), "--json", str(json_path), "--csv", str(csv_path)]) == 0

    assert "✓ Dead feature: 0" in capsys.readouterr().out
    assert json.loads(json_path.read_text())["consistent"] is True
    assert pd.read_csv(csv_path).empty


def test_load_model_names_after_file(tmp_path):
    model_path = tmp_path / "tiny.json"
    model_path.write_text(json.dumps({"features": ["Root", "A"],
                                      "relationships": [{"type": "optional", "left": "A", "right": "Root"}]}))
    fm = load_model(str(model_path))
    assert fm.name == "tiny"
    assert fm.relationships[0].conf_rule == "optional(A, Root)"
