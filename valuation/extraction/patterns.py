"""
Deterministic pattern-based metric extraction.

The last tier of every extraction chain: labeled dollar amounts, percentages,
share counts and ownership fractions read with regular expressions.  Tables
are read first (year-header tables take the left-most, most recent column;
capital-structure tables take the "Total" row), then labeled values anywhere
in the text fill what is still missing.
"""

import logging
import re
from typing import Callable, Optional

from valuation.extraction.numbers import parse_value_with_units
from valuation.models import MetricSet
from valuation.validation.dates import normalize_date

logger = logging.getLogger(__name__)

# ── Building blocks ──────────────────────────────────────────────────────────

_LINK = r"[\s:=\-]*(?:(?:of|is|was|at|approximately|totaled|totalled)\s+)?"
_MONEY = r"(\$?\s*\d[\d,]*(?:\.\d+)?(?:\s*(?:million|mm|billion|bn|thousand|[mbk])\b)?)"
_COUNT = r"(\d[\d,]*(?:\.\d+)?(?:\s*(?:million|thousand)\b)?)"
_PERCENT = r"(\d+(?:\.\d+)?)\s*(?:%|percent\b)?"
_MULTIPLE = r"(\d+(?:\.\d+)?)\s*x?\b"

_YEAR_RE = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")
_UNIT_HINT_RE = re.compile(r"in\s+(thousands|millions|billions)", re.IGNORECASE)
_UNIT_HINT_SCALE = {"thousands": 1e3, "millions": 1e6, "billions": 1e9}
_AMOUNT_IN_ROW_RE = re.compile(r"\(?\$?\s*\d[\d,]*(?:\.\d+)?\)?")
# leading row label, with parenthesised words and a trailing footnote marker: "Revenue (net) (1)"
_ROW_LABEL_RE = re.compile(r"^\s*(?:[^\d$(]+|\([^\d)]*\))*(?:\(\d{1,2}\)|\[\d{1,2}\])?")
_TABLE_SECTION_RE = re.compile(r"(capital\s+structure|ownership\s+(?:category|structure|summary)|share\s+ownership)", re.IGNORECASE)


def _compile(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def _money(raw: str) -> Optional[float]:
    value = parse_value_with_units(raw)
    if value is None or value <= 0:
        return None
    # a bare four-digit year next to a label is not an amount
    bare = "$" not in raw and not re.search(r"[a-z]", raw, re.IGNORECASE)
    if bare and value.is_integer() and 1900 <= value <= 2100:
        return None
    return value


def _count(raw: str) -> Optional[float]:
    value = parse_value_with_units(raw)
    return value if value and value > 0 else None


def _percent(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if 0 < value <= 100 else None


def _multiple(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if 0 < value < 1000 else None


def _first(patterns: list[re.Pattern], text: str, parse: Callable[[str], Optional[float]]) -> Optional[float]:
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = parse(match.group(1))
            if value is not None:
                return value
    return None


# ── Labeled values ───────────────────────────────────────────────────────────

_TOTAL_VALUE = _compile(
    r"total\s+company\s+valu(?:e|ation)" + _LINK + _MONEY,
    r"company\s+valuation" + _LINK + _MONEY,
    r"total\s+(?:business\s+)?valu(?:e|ation)" + _LINK + _MONEY,
    r"fair\s+market\s+value(?!\s+(?:per|of))" + _LINK + _MONEY,
    r"\u2022\s*(?:total\s+)?(?:company\s+)?valu(?:e|ation)" + _LINK + _MONEY,
)
_ENTERPRISE_VALUE = _compile(
    r"(?:business\s+)?enterprise\s+value" + _LINK + _MONEY,
)
_EQUITY_VALUE = _compile(
    r"(?:fair\s+market\s+)?value\s+of\s+(?:the\s+)?(?:total\s+)?equity" + _LINK + _MONEY,
    r"(?:total\s+)?equity\s+value" + _LINK + _MONEY,
)
_PER_SHARE = _compile(
    r"fair\s+market\s+value\s+per\s+share" + _LINK + _MONEY,
    r"(?:per\s+share\s+value|value\s+per\s+share|price\s+per\s+share)" + _LINK + _MONEY,
    r"\bshare\s+value" + _LINK + _MONEY,
)
_REVENUE = _compile(
    r"(?<![/\w])(?:total\s+|annual\s+|net\s+|gross\s+)?revenues?(?!\s+multiple)" + _LINK + _MONEY,
    r"(?<![/\w])(?:net\s+|total\s+)?sales" + _LINK + _MONEY,
)
_EBITDA = _compile(
    r"(?<![/\w])(?:adjusted\s+|normalized\s+)?ebitda(?!\s+(?:multiple|margin))" + _LINK + _MONEY,
    r"earnings\s+before\s+interest[\w\s,]*?amortization" + _LINK + _MONEY,
    r"operating\s+income" + _LINK + _MONEY,
)
_DISCOUNT_RATE = _compile(
    r"discount\s+rate(?:\s+applied)?" + _LINK + _PERCENT,
    r"required\s+rate\s+of\s+return" + _LINK + _PERCENT,
)
_WACC = _compile(
    r"\bwacc\b(?:\s+of)?" + _LINK + _PERCENT,
    r"weighted\s+average\s+cost\s+of\s+capital(?:\s*\(wacc\))?" + _LINK + _PERCENT,
    r"cost\s+of\s+capital" + _LINK + _PERCENT,
)
_RISK_FREE = _compile(r"risk[\s\-]free\s+rate" + _LINK + _PERCENT)
_RISK_PREMIUM = _compile(r"(?:market|equity)\s+risk\s+premium" + _LINK + _PERCENT)
_TOTAL_SHARES = _compile(
    r"(?:total\s+)?shares\s+outstanding" + _LINK + _COUNT,
    r"outstanding\s+shares" + _LINK + _COUNT,
    r"total\s+shares" + _LINK + _COUNT,
    _COUNT + r"\s+(?:total\s+shares|shares\s+outstanding|outstanding\s+shares)",
)
_ESOP_PERCENT = _compile(
    r"(?:esop|employee(?:\s+stock)?)\s+ownership(?:\s+percentage)?" + _LINK + _PERCENT,
    r"esop\s+percentage" + _LINK + _PERCENT,
    r"esop\s+(?:owns|holds)\s+(?:approximately\s+)?" + _PERCENT,
    r"(\d+(?:\.\d+)?)\s*%\s+(?:esop|employee)\s+ownership",
    r"ownership\s+percentage" + _LINK + _PERCENT,
)
_REVENUE_MULTIPLE = _compile(
    r"revenue\s+multiple" + _LINK + _MULTIPLE,
    _MULTIPLE + r"\s+revenue\s+multiple",
    r"ev\s*/\s*revenue(?:\s+multiple)?" + _LINK + _MULTIPLE,
)
_EBITDA_MULTIPLE = _compile(
    r"ebitda\s+multiple" + _LINK + _MULTIPLE,
    _MULTIPLE + r"\s+ebitda\s+multiple",
    r"ev\s*/\s*ebitda(?:\s+multiple)?" + _LINK + _MULTIPLE,
)
_VALUATION_DATE = _compile(
    r"(?:valuation\s+date|effective\s+date|date\s+of\s+(?:the\s+)?valuation)[\s:\-]*(?:(?:is|was|of)\s+)?([A-Za-z0-9,./\- ]{4,30}?\d{4})",
    r"\bas\s+of\s+((?:[A-Z][a-z]+\.?\s+\d{1,2},?\s+\d{4})|(?:\d{1,2}/\d{1,2}/\d{4})|(?:\d{4}-\d{2}-\d{2}))",
)


# ── Tables ───────────────────────────────────────────────────────────────────

def _row_amounts(line: str, scale: float) -> list[float]:
    values = []
    line = line[_ROW_LABEL_RE.match(line).end() :]
    for raw in _AMOUNT_IN_ROW_RE.findall(line):
        cleaned = raw.strip("()$ ").replace(",", "")
        try:
            value = float(cleaned)
        except ValueError:
            continue
        if value.is_integer() and 1900 <= value <= 2100 and "$" not in raw:
            continue
        values.append(value * scale)
    return values


def _is_year_header(line: str) -> bool:
    # two or more years and no other figures, e.g. "Fiscal Year  2023  2022  2021"
    if len(_YEAR_RE.findall(line)) < 2:
        return False
    return not re.search(r"\d", _YEAR_RE.sub("", line))


def _year_header_tables(lines: list[str]) -> dict[str, float]:
    """Revenue/EBITDA rows under a multi-year header; first column is the most recent."""
    found: dict[str, float] = {}
    for i, line in enumerate(lines):
        if not _is_year_header(line):
            continue
        context = " ".join(lines[max(0, i - 2) : i + 1])
        hint = _UNIT_HINT_RE.search(context)
        scale = _UNIT_HINT_SCALE[hint.group(1).lower()] if hint else 1.0
        for row in lines[i + 1 : i + 10]:
            label = row.strip().lower()
            for metric, prefix in (("revenue", ("revenue", "total revenue", "net revenue", "net sales", "sales")),
                                   ("ebitda", ("ebitda", "adjusted ebitda"))):
                if metric in found or not label.startswith(prefix):
                    continue
                if metric == "revenue" and "multiple" in label:
                    continue
                amounts = _row_amounts(row, scale)
                if amounts:
                    found[metric] = amounts[0]
    return found


def _capital_structure_tables(lines: list[str]) -> dict[str, float]:
    """"Total" row share counts and "ESOP" row percentages in ownership tables."""
    found: dict[str, float] = {}
    for i, line in enumerate(lines):
        if not _TABLE_SECTION_RE.search(line):
            continue
        for row in lines[i + 1 : i + 12]:
            label = row.strip().lower()
            if "total_shares" not in found and label.startswith("total"):
                counts = [v for v in _row_amounts(row, 1.0) if v > 1000]
                if counts:
                    found["total_shares"] = counts[0]
            if "esop_percentage" not in found and label.startswith("esop"):
                pct = re.search(r"(\d+(?:\.\d+)?)\s*%", row)
                if pct and _percent(pct.group(1)) is not None:
                    found["esop_percentage"] = float(pct.group(1))
    return found


# ── Public API ───────────────────────────────────────────────────────────────

def extract_with_patterns(text: str) -> MetricSet:
    """Read labeled metrics out of *text*. Never raises; unknown leaves stay None."""
    if not text or not text.strip():
        return MetricSet()

    lines = text.splitlines()
    table = _year_header_tables(lines)
    table.update(_capital_structure_tables(lines))

    total_value = _first(_TOTAL_VALUE, text, _money)
    enterprise_value = _first(_ENTERPRISE_VALUE, text, _money)
    equity_value = _first(_EQUITY_VALUE, text, _money)
    per_share = _first(_PER_SHARE, text, _money)

    discount_rate = _first(_DISCOUNT_RATE, text, _percent)
    wacc = _first(_WACC, text, _percent)

    total_shares = table.get("total_shares") or _first(_TOTAL_SHARES, text, _count)
    esop_percentage = table.get("esop_percentage") or _first(_ESOP_PERCENT, text, _percent)

    valuation_date = None
    for pattern in _VALUATION_DATE:
        match = pattern.search(text)
        if match:
            valuation_date = normalize_date(match.group(1))
            if valuation_date:
                break

    data = {
        "enterpriseValue": {"currentValue": enterprise_value or total_value},
        # no debt information in the text means equity equals the total value
        "valueOfEquity": {"currentValue": equity_value or total_value},
        "valuationPerShare": {"currentValue": per_share},
        "keyFinancials": {
            "revenue": table.get("revenue") or _first(_REVENUE, text, _money),
            "ebitda": table.get("ebitda") or _first(_EBITDA, text, _money),
            "weightedAverageCostOfCapital": wacc or discount_rate,
        },
        "companyValuation": {"totalValue": total_value or enterprise_value, "perShareValue": per_share},
        "discountRates": {
            "discountRate": discount_rate or wacc,
            "riskFreeRate": _first(_RISK_FREE, text, _percent),
            "marketRiskPremium": _first(_RISK_PREMIUM, text, _percent),
        },
        "capitalStructure": {"totalShares": total_shares, "esopPercentage": esop_percentage},
        "valuationMultiples": {
            "revenueMultiple": _first(_REVENUE_MULTIPLE, text, _multiple),
            "ebitdaMultiple": _first(_EBITDA_MULTIPLE, text, _multiple),
        },
        "valuationDate": {"date": valuation_date},
    }
    metrics = MetricSet.model_validate(data)
    logger.debug("Pattern extraction: %s", metrics.to_json_dict())
    return metrics
