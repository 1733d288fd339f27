from benchmarks.feature_models import BENCHMARKS

__all__ = ["BENCHMARKS"]
