"""
Merge the base MetricSet with the enhanced layer's resolved values, then
enforce the MetricSet invariants on the result.
"""

import logging
from enum import Enum
from typing import Optional

from valuation import config
from valuation.extraction.schema import get_leaf, path_key, set_leaf
from valuation.models import CrossValidation, MetricSet, ValidationResult
from valuation.validation.checks import check_relationships, confidence_score

logger = logging.getLogger(__name__)


class MergePrecedence(str, Enum):
    # enhanced value replaces the base value whenever it is non-null
    ENHANCED_OVERRIDES = "enhanced"
    # enhanced value is used only where the base value is null
    FILL_NULLS_ONLY = "fill_nulls"


# Enhanced metric → MetricSet leaf.  debtValue has no slot and stays in the report.
ENHANCED_PATHS: dict[str, tuple[str, str]] = {
    "enterpriseValue": ("enterpriseValue", "currentValue"),
    "valueOfEquity": ("valueOfEquity", "currentValue"),
    "revenue": ("keyFinancials", "revenue"),
    "ebitda": ("keyFinancials", "ebitda"),
    "discountRate": ("discountRates", "discountRate"),
    "totalShares": ("capitalStructure", "totalShares"),
    "esopPercentage": ("capitalStructure", "esopPercentage"),
}

_EV = ENHANCED_PATHS["enterpriseValue"]
_EQUITY = ENHANCED_PATHS["valueOfEquity"]
_WACC = ("keyFinancials", "weightedAverageCostOfCapital")
_DATE = ("valuationDate", "date")


def _merge_leaf(data: dict, path, value, precedence: MergePrecedence) -> bool:
    """Apply one enhanced value; True when it ended up in the result."""
    if value is None:
        return False
    current = get_leaf(data, path)
    if current is None or precedence is MergePrecedence.ENHANCED_OVERRIDES:
        if current is not None and current != value:
            logger.info("Enhanced %s=%s replaces base %s", path_key(path), value, current)
        set_leaf(data, path, value)
        return True
    return current == value


def reconcile(
    base: MetricSet,
    validation: Optional[ValidationResult],
    precedence: MergePrecedence | str | None = None,
) -> MetricSet:
    """Final MetricSet: base values merged with enhanced values under *precedence*."""
    precedence = MergePrecedence(precedence or config.MERGE_PRECEDENCE)
    data = base.to_json_dict()
    scores = dict(data.get("confidenceScores") or {})
    backed: set[tuple[str, str]] = set()

    if validation is not None:
        for metric, path in ENHANCED_PATHS.items():
            value = validation.values.get(metric)
            if _merge_leaf(data, path, value, precedence):
                backed.add(path)
                resolution = validation.resolutions.get(metric)
                if resolution is not None and resolution.chosen is not None:
                    scores[path_key(path)] = resolution.chosen.confidence
        _merge_leaf(data, _DATE, validation.valuation_date, precedence)

    # WACC follows the discount rate when the document gives only one of them
    if get_leaf(data, _WACC) is None:
        set_leaf(data, _WACC, get_leaf(data, ("discountRates", "discountRate")))

    _enforce_non_negative_debt(data, backed)
    data["confidenceScores"] = scores
    # CapitalStructure recomputes esopShares on validation
    return MetricSet.model_validate(data)


def _enforce_non_negative_debt(data: dict, backed: set) -> None:
    ev, equity = get_leaf(data, _EV), get_leaf(data, _EQUITY)
    if ev is None or equity is None or ev - equity >= 0:
        return
    # keep the value the enhanced layer stands behind; equity goes otherwise
    drop = _EV if (_EQUITY in backed and _EV not in backed) else _EQUITY
    logger.warning("EV %.2f < equity %.2f after merge; dropping %s", ev, equity, path_key(drop))
    set_leaf(data, drop, None)


def base_confidence(metrics: MetricSet) -> int:
    """
    Confidence for a MetricSet that never went through the enhanced pass.

    Same weighting as the enhanced score, over the leaves the enhanced pass
    would have resolved.  With no dated candidates, date proximity is neutral.
    """
    data = metrics.to_json_dict()
    values = {metric: get_leaf(data, path) for metric, path in ENHANCED_PATHS.items()}
    ev, equity = values["enterpriseValue"], values["valueOfEquity"]
    if ev is None or equity is None:
        cross = CrossValidation(status="not_applicable")
    else:
        cross = CrossValidation(
            status="consistent" if ev >= equity else "unresolved",
            implied_debt=ev - equity,
            negative_debt_unresolved=ev < equity,
        )
    relationships = check_relationships(values["revenue"], values["ebitda"], ev)
    return confidence_score(
        resolved=sum(v is not None for v in values.values()),
        total=len(ENHANCED_PATHS),
        cross_validation=cross,
        relationships=relationships,
        chosen=[],
    )
