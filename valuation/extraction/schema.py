"""
Helpers for walking and filling the fixed-shape MetricSet.

Paths are ``(group, leaf)`` pairs using the camelCase keys of the metrics
JSON, e.g. ``("keyFinancials", "revenue")``.
"""

from typing import Any, Optional

from valuation.models import MetricSet

# Headline values; fewer than two of these triggers the whole-document backfill.
KEY_METRIC_PATHS: list[tuple[str, str]] = [
    ("enterpriseValue", "currentValue"),
    ("valueOfEquity", "currentValue"),
    ("valuationPerShare", "currentValue"),
    ("companyValuation", "totalValue"),
    ("companyValuation", "perShareValue"),
    ("keyFinancials", "revenue"),
    ("keyFinancials", "ebitda"),
]

_TEXT_LEAVES = {"date", "description"}


def leaf_paths(include_text: bool = False) -> list[tuple[str, str]]:
    """Every value-bearing leaf, in schema order; currency tags are never included."""
    paths = []
    for group, leaves in MetricSet().to_json_dict().items():
        if group == "confidenceScores" or not isinstance(leaves, dict):
            continue
        for leaf in leaves:
            if leaf == "currency":
                continue
            if leaf in _TEXT_LEAVES and not include_text:
                continue
            paths.append((group, leaf))
    return paths


def path_key(path: tuple[str, str]) -> str:
    return f"{path[0]}.{path[1]}"


def get_leaf(data: dict, path: tuple[str, str]) -> Any:
    group = data.get(path[0])
    return group.get(path[1]) if isinstance(group, dict) else None


def set_leaf(data: dict, path: tuple[str, str], value: Any) -> None:
    data.setdefault(path[0], {})[path[1]] = value


def count_key_metrics(metrics: MetricSet) -> int:
    data = metrics.to_json_dict()
    return sum(1 for p in KEY_METRIC_PATHS if get_leaf(data, p) is not None)


def count_filled(metrics: MetricSet) -> int:
    data = metrics.to_json_dict()
    return sum(1 for p in leaf_paths(include_text=True) if get_leaf(data, p) is not None)


def fill_nulls(target: MetricSet, source: MetricSet, confidence: Optional[float] = None) -> MetricSet:
    """Copy of *target* with its null leaves filled from *source*."""
    data = target.to_json_dict()
    src = source.to_json_dict()
    scores = dict(data.get("confidenceScores") or {})
    for path in leaf_paths(include_text=True):
        if get_leaf(data, path) is None and get_leaf(src, path) is not None:
            set_leaf(data, path, get_leaf(src, path))
            if confidence is not None:
                scores[path_key(path)] = confidence
    data["confidenceScores"] = scores
    return MetricSet.model_validate(data)
