"""
Tests for valuation.validation.enhanced — multi-candidate validation.

The model is a fake that answers each prompt kind (valuation date, candidate
prompts per metric and method, arbitration, pair choice) from a table.
"""

import pytest

from valuation.errors import ExtractionFailure
from valuation.models import Candidate, DateRelevance
from valuation.validation.enhanced import (
    METHOD_CONFIDENCE,
    TARGET_METRICS,
    EnhancedValidator,
    parse_candidate_reply,
)
from valuation.validation.prompts import METRIC_DESCRIPTIONS

DOCUMENT = "ESOP valuation report for Acme Manufacturing, prepared for the plan trustee."
VALUATION_DATE = "December 31, 2023"


def _reply(value, evidence):
    return f"VALUE: {value}\nEVIDENCE: {evidence}"


def _current(value, what):
    return _reply(value, f"As of {VALUATION_DATE}, the {what} was {value}.")


CLEAN_ANSWERS = {
    ("enterpriseValue", "primary"): _current(95000000, "enterprise value"),
    ("valueOfEquity", "primary"): _current(80000000, "equity value"),
    ("debtValue", "primary"): _current(15000000, "total debt"),
    ("revenue", "primary"): _current(50000000, "revenue"),
    ("ebitda", "primary"): _current(10000000, "EBITDA"),
    ("discountRate", "primary"): _current(14, "discount rate"),
    ("totalShares", "primary"): _current(1000000, "number of shares outstanding"),
    ("esopPercentage", "primary"): _current(30, "ESOP ownership percentage"),
}


class FakeModel:
    def __init__(self, answers=None, date_reply=VALUATION_DATE, arbitration=None, pair=None, fail_all=False):
        self.answers = answers or {}
        self.date_reply = date_reply
        self.arbitration = arbitration
        self.pair = pair
        self.fail_all = fail_all
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, prompt, system=None, temperature=None, max_tokens=None):
        if self.fail_all:
            raise ExtractionFailure("model unavailable")
        first = prompt.split("\n", 1)[0]
        if first.startswith("What is the valuation date"):
            self.calls.append(("date", ""))
            return self.date_reply
        if first.startswith("Several values"):
            self.calls.append(("arbitration", ""))
            if isinstance(self.arbitration, Exception):
                raise self.arbitration
            return self.arbitration or "no opinion"
        if first.startswith("The extracted enterprise value"):
            self.calls.append(("pair", ""))
            return self.pair or "no opinion"

        if first.startswith("Extract the"):
            method = "primary"
        elif first.startswith("Find the"):
            method = "secondary"
        else:
            method = "targeted"
        metric = next(m for m, d in METRIC_DESCRIPTIONS.items() if f"the {d['label']} " in first)
        self.calls.append((metric, method))
        answer = self.answers.get((metric, method), "VALUE: NOT_FOUND\nEVIDENCE: none")
        return answer() if callable(answer) else answer


def _validator(model, **kwargs):
    return EnhancedValidator(complete=model, concurrency=4, **kwargs)


class TestParseCandidateReply:
    def test_value_and_evidence(self):
        value, evidence = parse_candidate_reply("VALUE: 95000000\nEVIDENCE: Enterprise value was $95 million.")
        assert value == 95_000_000
        assert evidence == "Enterprise value was $95 million."

    def test_not_found(self):
        assert parse_candidate_reply("VALUE: NOT_FOUND\nEVIDENCE: none")[0] is None

    def test_fiscal_year_before_value(self):
        value, _ = parse_candidate_reply("VALUE: FY2023 30000000\nEVIDENCE: FY2023 revenue of 30,000,000.")
        assert value == 30_000_000

    def test_free_form(self):
        value, evidence = parse_candidate_reply("The enterprise value is $95,000,000.")
        assert value == 95_000_000
        assert evidence == "The enterprise value is $95,000,000."

    def test_empty(self):
        assert parse_candidate_reply("") == (None, "")


class TestValidate:
    @pytest.mark.asyncio
    async def test_clean_document(self):
        model = FakeModel(CLEAN_ANSWERS)
        result = await _validator(model).validate(DOCUMENT)

        assert result.valuation_date == "2023-12-31"
        assert result.values["enterpriseValue"] == 95_000_000
        assert result.values["valueOfEquity"] == 80_000_000
        assert result.values["esopPercentage"] == 30
        assert result.cross_validation.status == "consistent"
        assert result.cross_validation.implied_debt == 15_000_000
        assert result.relationships.issues == []
        assert result.conflicts == []
        assert result.confidence == 100

        chosen = result.resolutions["enterpriseValue"].chosen
        assert chosen.method == "primary"
        assert chosen.confidence == METHOD_CONFIDENCE["primary"]
        assert chosen.date_relevance is DateRelevance.CURRENT

    @pytest.mark.asyncio
    async def test_asks_every_metric_with_three_prompts(self):
        model = FakeModel(CLEAN_ANSWERS)
        await _validator(model).validate(DOCUMENT)
        asked = {c for c in model.calls if c[0] in TARGET_METRICS}
        assert asked == {(m, method) for m in TARGET_METRICS for method in ("primary", "secondary", "targeted")}

    @pytest.mark.asyncio
    async def test_out_of_period_candidate_filtered(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("enterpriseValue", "primary")] = _reply(80000000, "In 2021 the enterprise value was $80,000,000.")
        answers[("enterpriseValue", "targeted")] = _current(95000000, "enterprise value")
        model = FakeModel(answers)

        result = await _validator(model).validate(DOCUMENT)

        resolution = result.resolutions["enterpriseValue"]
        assert resolution.value == 95_000_000
        assert {c.value for c in resolution.candidates} == {80_000_000, 95_000_000}
        assert not resolution.ambiguous
        assert ("arbitration", "") not in model.calls

    @pytest.mark.asyncio
    async def test_only_historical_candidates_kept_at_half_confidence(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("revenue", "primary")] = _reply(40000000, "Revenue for fiscal 2021 was $40,000,000.")
        model = FakeModel(answers)

        result = await _validator(model).validate(DOCUMENT)

        resolution = result.resolutions["revenue"]
        assert resolution.ambiguous
        assert resolution.value == 40_000_000
        assert resolution.chosen.confidence == pytest.approx(METHOD_CONFIDENCE["primary"] / 2)

    @pytest.mark.asyncio
    async def test_conflict_resolved_by_arbitration(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("revenue", "secondary")] = _current(52000000, "audited revenue")
        model = FakeModel(answers, arbitration='{"choice": 2, "reason": "audited figure"}')

        result = await _validator(model).validate(DOCUMENT)

        assert result.values["revenue"] == 52_000_000
        conflict = next(c for c in result.conflicts if c.metric == "revenue")
        assert conflict.resolution == "arbitration"
        assert conflict.reason == "audited figure"
        assert len(conflict.candidates) == 2

    @pytest.mark.asyncio
    async def test_failed_arbitration_uses_highest_confidence(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("revenue", "secondary")] = _current(52000000, "audited revenue")
        model = FakeModel(answers, arbitration=ExtractionFailure("timeout"))

        result = await _validator(model).validate(DOCUMENT)

        assert result.values["revenue"] == 50_000_000
        conflict = next(c for c in result.conflicts if c.metric == "revenue")
        assert conflict.resolution == "highest_confidence"

    @pytest.mark.asyncio
    async def test_out_of_range_arbitration_choice(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("revenue", "secondary")] = _current(52000000, "audited revenue")
        model = FakeModel(answers, arbitration='{"choice": 7}')

        result = await _validator(model).validate(DOCUMENT)
        assert result.values["revenue"] == 50_000_000

    @pytest.mark.asyncio
    async def test_relationship_issues_are_advisory(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("ebitda", "primary")] = _current(40000000, "EBITDA")
        model = FakeModel(answers)

        result = await _validator(model).validate(DOCUMENT)

        assert result.values["ebitda"] == 40_000_000
        assert any("EBITDA margin" in issue for issue in result.relationships.issues)
        assert result.confidence == 80

    @pytest.mark.asyncio
    async def test_model_down(self):
        model = FakeModel(fail_all=True)
        result = await _validator(model).validate(DOCUMENT)
        assert all(v is None for v in result.values.values())
        assert result.valuation_date is None
        assert result.cross_validation.status == "not_applicable"
        assert result.confidence == 55

    @pytest.mark.asyncio
    async def test_date_falls_back_to_patterns(self):
        model = FakeModel(CLEAN_ANSWERS, date_reply="NOT_FOUND")
        result = await _validator(model).validate("Valuation Date: June 30, 2024\n" + DOCUMENT)
        assert result.valuation_date == "2024-06-30"


class TestDateAwareness:
    @pytest.mark.asyncio
    async def test_disabled(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("revenue", "primary")] = _reply(40000000, "Revenue for fiscal 2021 was $40,000,000.")
        model = FakeModel(answers)

        result = await _validator(model, date_aware=False).validate(DOCUMENT)

        assert result.valuation_date is None
        assert ("date", "") not in model.calls
        assert not any(method == "targeted" for _, method in model.calls)
        resolution = result.resolutions["revenue"]
        assert resolution.value == 40_000_000
        assert not resolution.ambiguous
        assert resolution.chosen.confidence == METHOD_CONFIDENCE["primary"]

    @pytest.mark.asyncio
    async def test_no_targeted_prompt_without_date(self):
        model = FakeModel(CLEAN_ANSWERS, date_reply="NOT_FOUND")
        await _validator(model).validate(DOCUMENT)
        assert not any(method == "targeted" for _, method in model.calls)


class TestCrossValidation:
    @pytest.mark.asyncio
    async def test_implausible_pair_corrected(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("enterpriseValue", "primary")] = _current(60000000, "enterprise value")
        answers[("valueOfEquity", "secondary")] = _current(45000000, "equity value after debt")
        model = FakeModel(
            answers,
            arbitration='{"choice": 1, "reason": "first"}',
            pair='{"enterpriseValue": 1, "valueOfEquity": 2, "reason": "only plausible pair"}',
        )

        result = await _validator(model).validate(DOCUMENT)

        cross = result.cross_validation
        assert cross.status == "corrected"
        assert cross.original_equity_value == 80_000_000
        assert cross.implied_debt == 15_000_000
        assert result.values["enterpriseValue"] == 60_000_000
        assert result.values["valueOfEquity"] == 45_000_000
        assert ("pair", "") in model.calls

    @pytest.mark.asyncio
    async def test_pair_falls_back_to_best_valid(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("enterpriseValue", "primary")] = _current(60000000, "enterprise value")
        answers[("valueOfEquity", "secondary")] = _current(45000000, "equity value after debt")
        model = FakeModel(answers, arbitration='{"choice": 1}', pair="I am not sure.")

        result = await _validator(model).validate(DOCUMENT)

        assert result.cross_validation.status == "corrected"
        assert result.values["valueOfEquity"] == 45_000_000

    @pytest.mark.asyncio
    async def test_negative_debt_unresolved_drops_weaker_value(self):
        answers = dict(CLEAN_ANSWERS)
        answers[("enterpriseValue", "primary")] = _current(60000000, "enterprise value")
        model = FakeModel(answers)

        result = await _validator(model).validate(DOCUMENT)

        cross = result.cross_validation
        assert cross.status == "unresolved"
        assert cross.negative_debt_unresolved
        assert cross.implied_debt == 15_000_000
        assert result.values["enterpriseValue"] == 60_000_000
        assert result.values["valueOfEquity"] is None
        assert result.confidence < 100

    @pytest.mark.asyncio
    async def test_missing_equity_not_applicable(self):
        answers = dict(CLEAN_ANSWERS)
        del answers[("valueOfEquity", "primary")]
        model = FakeModel(answers)

        result = await _validator(model).validate(DOCUMENT)

        assert result.cross_validation.status == "not_applicable"
        assert result.cross_validation.implied_debt == 15_000_000


class TestResolve:
    @pytest.mark.asyncio
    async def test_historical_dropped_before_arbitration(self):
        model = FakeModel()
        validator = _validator(model)
        candidates = [
            Candidate(metric="enterpriseValue", value=80_000_000, method="primary",
                      date_relevance=DateRelevance.HISTORICAL_OR_PROJECTED),
            Candidate(metric="enterpriseValue", value=95_000_000, method="targeted",
                      date_relevance=DateRelevance.CURRENT),
        ]
        resolution, conflict = await validator.resolve("enterpriseValue", candidates, DOCUMENT, "2023-12-31")
        assert resolution.value == 95_000_000
        assert conflict is None
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        resolution, conflict = await _validator(FakeModel()).resolve("ebitda", [], DOCUMENT, None)
        assert resolution.value is None
        assert conflict is None
