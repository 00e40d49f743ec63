"""
Prompts for the enhanced validation pass.

Every candidate prompt asks for the same two-line reply so the value and its
supporting sentence can be read back without JSON:

    VALUE: <number or NOT_FOUND>
    EVIDENCE: <the sentence or table row the number comes from>
"""

from typing import Sequence

from valuation.models import Candidate

VALIDATION_SYSTEM_PROMPT = (
    "You are a careful financial analyst reviewing an ESOP valuation report. "
    "Answer only from the document text you are given."
)

_REPLY_FORMAT = """Reply in exactly this format:
VALUE: <the number in full units, no $ or commas; percentages without the % sign; or NOT_FOUND>
EVIDENCE: <the sentence or table row the value comes from, copied from the document>"""

# Per metric: what it is, the wording to look for, and where to look.
METRIC_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "enterpriseValue": {
        "label": "ENTERPRISE VALUE",
        "definition": "the total value of the business including debt (Enterprise Value = Equity Value + Debt)",
        "terms": '"Enterprise Value", "Business Enterprise Value", "Total Business Value", "Total Company Value" when it includes debt',
        "sections": "the executive summary, the valuation conclusion, business enterprise value sections",
    },
    "valueOfEquity": {
        "label": "EQUITY VALUE",
        "definition": "the value available to shareholders only (Equity Value = Enterprise Value - Debt)",
        "terms": '"Equity Value", "Fair Market Value of Equity", "Value of Equity", "Total Equity Value"',
        "sections": "equity valuation sections, the fair market value conclusion, capital structure analysis",
    },
    "debtValue": {
        "label": "TOTAL DEBT",
        "definition": "interest-bearing debt of the company",
        "terms": '"Total Debt", "Outstanding Debt", "Interest-Bearing Debt", "Long-term Debt", "Net Debt"',
        "sections": "the balance sheet summary, the bridge from enterprise value to equity value",
    },
    "revenue": {
        "label": "ANNUAL REVENUE",
        "definition": "the most recent full year of revenue",
        "terms": '"Revenue", "Total Revenue", "Net Sales", "Gross Revenue"',
        "sections": "financial summaries and historical financial tables",
    },
    "ebitda": {
        "label": "EBITDA",
        "definition": "earnings before interest, taxes, depreciation and amortization for the most recent full year",
        "terms": '"EBITDA", "Adjusted EBITDA", "Normalized EBITDA"',
        "sections": "financial summaries, normalization adjustments, historical financial tables",
    },
    "discountRate": {
        "label": "DISCOUNT RATE",
        "definition": "the discount rate or weighted average cost of capital used in the valuation, as a percentage",
        "terms": '"Discount Rate", "WACC", "Weighted Average Cost of Capital", "Required Rate of Return"',
        "sections": "the income approach, discounted cash flow analysis, cost of capital build-up",
    },
    "totalShares": {
        "label": "TOTAL SHARES OUTSTANDING",
        "definition": "the number of shares outstanding",
        "terms": '"Total Shares Outstanding", "Shares Outstanding", "Common Shares Outstanding"',
        "sections": "capital structure and ownership tables",
    },
    "esopPercentage": {
        "label": "ESOP OWNERSHIP PERCENTAGE",
        "definition": "the percentage of the company owned by the ESOP",
        "terms": '"ESOP Ownership Percentage", "Employee Ownership", "ESOP Percentage"',
        "sections": "capital structure and ownership tables, the plan description",
    },
}


def _with_document(instructions: str, context: str) -> str:
    return f"{instructions}\n\n{_REPLY_FORMAT}\n\nDocument:\n{context}"


def primary_prompt(metric: str, context: str) -> str:
    d = METRIC_DESCRIPTIONS[metric]
    return _with_document(
        f"Extract the {d['label']} from this ESOP valuation document: {d['definition']}.\n"
        f"Look for terms like {d['terms']}.",
        context,
    )


def secondary_prompt(metric: str, context: str) -> str:
    d = METRIC_DESCRIPTIONS[metric]
    return _with_document(
        f"Find the {d['label']} in this document, {d['definition']}.\n"
        f"Rely on the authoritative sections: {d['sections']}. "
        "Prefer the concluded figure over figures quoted in passing.",
        context,
    )


def targeted_prompt(metric: str, context: str, valuation_date: str) -> str:
    d = METRIC_DESCRIPTIONS[metric]
    return _with_document(
        f"What was the {d['label']} as of the valuation date, {valuation_date}? "
        f"It is {d['definition']}.\n"
        "Ignore prior-year figures and projections; give only the value at the valuation date.",
        context,
    )


def valuation_date_prompt(context: str) -> str:
    return (
        "What is the valuation date of this ESOP valuation report (the date as of which "
        'the value is concluded; look for "Valuation Date", "as of", "Effective Date")?\n'
        "Reply with only the date, e.g. December 31, 2023, or NOT_FOUND.\n\n"
        f"Document:\n{context}"
    )


def _describe(candidates: Sequence[Candidate]) -> str:
    lines = []
    for i, c in enumerate(candidates, start=1):
        lines.append(
            f"{i}. value={c.value:,.2f} method={c.method} confidence={c.confidence:.2f} "
            f"date_relevance={c.date_relevance.value} evidence={c.evidence[:200]!r}"
        )
    return "\n".join(lines)


def arbitration_prompt(
    metric: str,
    candidates: Sequence[Candidate],
    context: str,
    valuation_date: str | None,
) -> str:
    d = METRIC_DESCRIPTIONS[metric]
    date_line = f"The valuation date is {valuation_date}.\n" if valuation_date else ""
    return (
        f"Several values were extracted for the {d['label']} ({d['definition']}).\n"
        f"{date_line}"
        f"Candidates:\n{_describe(candidates)}\n\n"
        "Choose the single most reliable candidate for the value at the valuation date.\n"
        'Reply with ONLY a JSON object: {"choice": <candidate number>, "reason": "<one sentence>"}\n\n'
        f"Document:\n{context}"
    )


def pair_prompt(
    enterprise: Sequence[Candidate],
    equity: Sequence[Candidate],
    context: str,
    valuation_date: str | None,
) -> str:
    date_line = f"The valuation date is {valuation_date}; prefer values as of that date.\n" if valuation_date else ""
    return (
        "The extracted enterprise value and equity value imply a debt figure that is negative "
        "or implausibly large (Debt = Enterprise Value - Equity Value must be between 0 and "
        "80% of Enterprise Value).\n"
        f"{date_line}"
        f"Enterprise value candidates:\n{_describe(enterprise)}\n\n"
        f"Equity value candidates:\n{_describe(equity)}\n\n"
        "Choose the pair that the document supports and that gives a plausible debt figure.\n"
        'Reply with ONLY a JSON object: {"enterpriseValue": <candidate number>, '
        '"valueOfEquity": <candidate number>, "reason": "<one sentence>"}\n\n'
        f"Document:\n{context}"
    )
