"""
Deterministic checks used by the enhanced validation pass: candidate
filtering, enterprise/equity pair plausibility, relationship sanity checks
and the confidence score.
"""

from itertools import product
from typing import Iterable, Optional, Sequence

from valuation.models import Candidate, CrossValidation, DateRelevance, RelationshipReport
from valuation.validation.dates import DATE_PROXIMITY

# Implied debt above this share of enterprise value is implausible.
MAX_DEBT_SHARE = 0.8

EBITDA_MARGIN_RANGE = (5.0, 50.0)  # percent
EV_EBITDA_RANGE = (3.0, 20.0)  # multiple

CONFIDENCE_WEIGHTS = {
    "completeness": 0.35,
    "cross_validation": 0.25,
    "relationships": 0.20,
    "date_proximity": 0.20,
}

_PREFERRED = (DateRelevance.CURRENT, DateRelevance.LIKELY_CURRENT)


def dedupe_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Drop candidates whose value repeats an earlier one."""
    seen: set[float] = set()
    out = []
    for c in candidates:
        if c.value in seen:
            continue
        seen.add(c.value)
        out.append(c)
    return out


def filter_candidates(candidates: Sequence[Candidate]) -> tuple[list[Candidate], bool]:
    """
    Keep candidates tied to the valuation date.

    Returns ``(kept, ambiguous)``.  When none are current or likely current,
    every candidate is kept at half confidence and ``ambiguous`` is True.
    """
    preferred = [c for c in candidates if c.date_relevance in _PREFERRED]
    if preferred:
        return preferred, False
    if not candidates:
        return [], False
    halved = [c.model_copy(update={"confidence": c.confidence / 2}) for c in candidates]
    return halved, True


def highest_confidence(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Highest confidence; ties go to the earlier candidate."""
    return max(candidates, key=lambda c: c.confidence) if candidates else None


def implied_debt(enterprise_value: Optional[float], equity_value: Optional[float]) -> Optional[float]:
    if enterprise_value is None or equity_value is None:
        return None
    return enterprise_value - equity_value


def is_plausible_pair(enterprise_value: float, equity_value: float) -> bool:
    debt = enterprise_value - equity_value
    return 0 <= debt <= MAX_DEBT_SHARE * enterprise_value


def _proximity(c: Candidate) -> float:
    return DATE_PROXIMITY.get(c.date_relevance, 0.5)


def best_valid_pair(
    enterprise: Sequence[Candidate],
    equity: Sequence[Candidate],
) -> Optional[tuple[Candidate, Candidate]]:
    """Plausible (enterprise, equity) pair closest to the valuation date, then most confident."""
    valid = [(ev, eq) for ev, eq in product(enterprise, equity) if is_plausible_pair(ev.value, eq.value)]
    if not valid:
        return None
    return max(
        valid,
        key=lambda pair: (
            _proximity(pair[0]) + _proximity(pair[1]),
            pair[0].confidence + pair[1].confidence,
        ),
    )


def check_relationships(
    revenue: Optional[float],
    ebitda: Optional[float],
    enterprise_value: Optional[float],
) -> RelationshipReport:
    """Advisory checks; issues are recorded, values are never changed."""
    report = RelationshipReport()

    if revenue and ebitda is not None:
        margin = ebitda / revenue * 100
        report.ebitda_margin = margin
        low, high = EBITDA_MARGIN_RANGE
        if margin > high:
            report.issues.append(f"Unusually high EBITDA margin ({margin:.1f}% > {high:.0f}%)")
        elif margin < low:
            report.issues.append(f"Unusually low EBITDA margin ({margin:.1f}% < {low:.0f}%)")

    if enterprise_value is not None and ebitda:
        multiple = enterprise_value / ebitda
        report.ev_ebitda_multiple = multiple
        low, high = EV_EBITDA_RANGE
        if multiple > high:
            report.issues.append(f"Unusually high EV/EBITDA multiple ({multiple:.1f}x > {high:.0f}x)")
        elif multiple < low:
            report.issues.append(f"Unusually low EV/EBITDA multiple ({multiple:.1f}x < {low:.0f}x)")

    return report


def confidence_score(
    resolved: int,
    total: int,
    cross_validation: CrossValidation,
    relationships: RelationshipReport,
    chosen: Iterable[Optional[Candidate]],
) -> int:
    """Weighted blend of completeness, cross-validation, relationship cleanliness and date proximity, 0–100."""
    completeness = resolved / total if total else 0.0
    cross_ok = 0.0 if cross_validation.negative_debt_unresolved else 1.0
    relationships_ok = 0.0 if relationships.issues else 1.0

    known = [
        DATE_PROXIMITY[c.date_relevance]
        for c in chosen
        if c is not None and c.date_relevance in DATE_PROXIMITY
    ]
    date_proximity = sum(known) / len(known) if known else 0.5

    w = CONFIDENCE_WEIGHTS
    score = (
        w["completeness"] * completeness
        + w["cross_validation"] * cross_ok
        + w["relationships"] * relationships_ok
        + w["date_proximity"] * date_proximity
    )
    return round(score * 100)
