import argparse
import json
import logging
import os
import sys

from anomaly_analysis import AnalysisConfig, AnalysisReport, AnomalyAnalyzer, AnomalyCategory
from benchmarks import BENCHMARKS
from feature_model import FeatureModel, FeatureOrder, RelationshipType

logger = logging.getLogger(__name__)

SUMMARY_TITLES = [
    (AnomalyCategory.DEAD, "Dead feature"),
    (AnomalyCategory.FALSE_OPTIONAL, "False optional feature"),
    (AnomalyCategory.CONDITIONALLY_DEAD, "Conditionally dead feature"),
    (AnomalyCategory.FULL_MANDATORY, "Full mandatory feature"),
    (AnomalyCategory.REDUNDANT, "Redundant constraint"),
]


def load_model(path: str) -> FeatureModel:
    with open(path, 'r') as f:
        data = json.load(f)
    if not data.get("name"):
        data["name"] = os.path.splitext(os.path.basename(path))[0]
    return FeatureModel.from_dict(data)


def config_from_args(args) -> AnalysisConfig:
    return AnalysisConfig(
        solver=args.solver,
        solver_time_limit=args.time_limit,
        max_diagnoses=args.max_diagnoses,
        max_depth=args.max_depth,
        enumeration_timeout=args.enumeration_timeout,
        prefer_recent_constraints=not args.declaration_order,
        feature_order=FeatureOrder(args.feature_order),
        check_dead=not args.skip_dead,
        check_conditionally_dead=not args.skip_conditionally_dead,
        check_full_mandatory=not args.skip_full_mandatory,
        check_false_optional=not args.skip_false_optional,
        check_redundancy=not args.skip_redundancy,
    )


def relationship_counts(model: FeatureModel) -> str:
    return ", ".join(f"{t.value}: {model.count_relationships(t)}" for t in RelationshipType)


def summary_lines(report: AnalysisReport):
    lines = []
    if report.consistent:
        lines.append("✓ Consistency: ok")
    else:
        lines.append("X Void feature model")
        lines += _explanation_block(report, AnomalyCategory.VOID_MODEL)
        return lines

    for category, title in SUMMARY_TITLES:
        subjects = report.subjects(category)
        if not subjects:
            lines.append(f"✓ {title}: 0")
            continue

        heading = f"X {title}{'s' if len(subjects) > 1 else ''} ({len(subjects)}): "
        if category == AnomalyCategory.REDUNDANT:
            lines.append(heading)
            lines += [f"\t[{s}]" for s in subjects]
        else:
            lines.append(heading + ",".join(subjects))
        lines += _explanation_block(report, category)
    return lines


def _explanation_block(report: AnalysisReport, category: AnomalyCategory):
    lines = []
    for finding in report.findings(category):
        if not finding.explanations:
            continue
        lines.append(f"\tExplanation(s) for {finding.subject}:")
        lines += [f"\t\t{e}" for e in finding.explanations]
        if finding.truncated:
            lines.append("\t\t(more diagnoses exist, enumeration stopped at a limit)")
    return lines


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Detect anomalies in a feature model and explain them with minimal diagnoses",
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        '--model',
        type=str,
        help='Path to a feature model in JSON (features, relationships, constraints)'
    )
    source.add_argument(
        '--benchmark',
        type=str,
        choices=sorted(BENCHMARKS),
        help='Analyze one of the bundled feature models'
    )

    parser.add_argument('--solver', type=str, default='ortools', help='CPMpy solver name')
    parser.add_argument('--time-limit', type=float, default=None,
                        help='Time limit per consistency check (seconds)')
    parser.add_argument('--max-diagnoses', type=int, default=100,
                        help='Stop enumerating diagnoses of one anomaly after this many')
    parser.add_argument('--max-depth', type=int, default=None,
                        help='Depth limit of the diagnosis enumeration')
    parser.add_argument('--enumeration-timeout', type=float, default=None,
                        help='Time limit for enumerating the diagnoses of one anomaly (seconds)')
    parser.add_argument('--declaration-order', action='store_true',
                        help='Hand constraints to FastDiag in declaration order instead of most recent first')
    parser.add_argument('--feature-order', type=str, default='bf', choices=['bf', 'df'],
                        help='Visit features breadth-first (declaration order) or depth-first')

    parser.add_argument('--skip-dead', action='store_true')
    parser.add_argument('--skip-conditionally-dead', action='store_true')
    parser.add_argument('--skip-full-mandatory', action='store_true')
    parser.add_argument('--skip-false-optional', action='store_true')
    parser.add_argument('--skip-redundancy', action='store_true')

    parser.add_argument('--json', type=str, default=None, help='Write the report as JSON to this file')
    parser.add_argument('--csv', type=str, default=None, help='Write one row per explanation to this CSV file')
    parser.add_argument('--verbose', action='store_true', help='Log every consistency check')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    model = load_model(args.model) if args.model else BENCHMARKS[args.benchmark]()
    analyzer = AnomalyAnalyzer(model, config_from_args(args))
    report = analyzer.run()

    print("\n" + "=" * 80)
    print(f"ANALYSIS OF '{report.model_name}' ({model.num_features} features, "
          f"{len(model.all_relationships())} relationships)")
    print(relationship_counts(model))
    print("=" * 80)
    for line in summary_lines(report):
        print(line)
    print("-" * 80)
    print(f"{report.oracle_calls} consistency checks, {len(report.solver_failures)} solver failures, "
          f"{report.elapsed:.2f}s")
    print("=" * 80 + "\n")

    if args.json:
        with open(args.json, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)
        logger.info(f"Report saved to: {args.json}")

    if args.csv:
        report.to_frame().to_csv(args.csv, index=False)
        logger.info(f"Explanations saved to: {args.csv}")

    return 0 if not report.has_anomalies else 1


if __name__ == "__main__":
    sys.exit(main())
