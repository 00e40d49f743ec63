"""
Enhanced validation layer — several independent candidates per metric,
filtered by their relation to the valuation date, arbitrated when they
disagree, and cross-checked so enterprise and equity value imply a sane debt.

Nothing here raises past ``validate``: a failed prompt yields no candidate, a
failed arbitration falls back to the most confident candidate, and
relationship problems are recorded as advisory issues.
"""

import logging
import re
from typing import Optional, Sequence

from valuation import config
from valuation.concurrency import run_in_waves
from valuation.extraction.json_repair import parse_json_object
from valuation.extraction.numbers import parse_metric_response
from valuation.extraction.patterns import extract_with_patterns
from valuation.llm.client import Complete, call_llm_with_fallback
from valuation.models import (
    Candidate,
    ConflictRecord,
    CrossValidation,
    MetricResolution,
    ValidationResult,
)
from valuation.progress import NullProgress, ProgressReporter
from valuation.tokens import truncate_to_tokens
from valuation.validation import prompts
from valuation.validation.checks import (
    best_valid_pair,
    check_relationships,
    confidence_score,
    dedupe_candidates,
    filter_candidates,
    highest_confidence,
    is_plausible_pair,
)
from valuation.validation.dates import classify_relevance, normalize_date

logger = logging.getLogger(__name__)

TARGET_METRICS = (
    "enterpriseValue",
    "valueOfEquity",
    "debtValue",
    "revenue",
    "ebitda",
    "discountRate",
    "totalShares",
    "esopPercentage",
)

METHOD_CONFIDENCE = {"primary": 0.8, "secondary": 0.7, "targeted": 0.9}
# Confidence given to a value already judged suspect by cross-validation.
ORIGINAL_CONFIDENCE = 0.3

_VALUE_RE = re.compile(r"VALUE:\s*(.+)", re.IGNORECASE)
_EVIDENCE_RE = re.compile(r"EVIDENCE:\s*(.+)", re.IGNORECASE | re.DOTALL)


def parse_candidate_reply(reply: Optional[str]) -> tuple[Optional[float], str]:
    """Read ``VALUE:`` / ``EVIDENCE:`` lines; a free-form reply is parsed whole."""
    if not reply:
        return None, ""
    value_match = _VALUE_RE.search(reply)
    if not value_match:
        return parse_metric_response(reply), reply.strip()
    evidence_match = _EVIDENCE_RE.search(reply)
    evidence = evidence_match.group(1).strip() if evidence_match else ""
    return parse_metric_response(value_match.group(1)), evidence


class EnhancedValidator:
    def __init__(
        self,
        complete: Complete | None = None,
        date_aware: bool | None = None,
        concurrency: int | None = None,
        context_tokens: int | None = None,
    ):
        self.complete = complete or call_llm_with_fallback
        self.date_aware = config.DATE_AWARE_VALIDATION if date_aware is None else date_aware
        self.concurrency = concurrency or config.EXTRACTION_CONCURRENCY
        self.context_tokens = context_tokens or config.VALIDATION_CONTEXT_TOKENS

    async def _ask(self, prompt: str, max_tokens: int) -> str:
        return await self.complete(
            prompt,
            system=prompts.VALIDATION_SYSTEM_PROMPT,
            temperature=0,
            max_tokens=max_tokens,
        )

    # ── Top level ─────────────────────────────────────────────────────────

    async def validate(self, text: str, progress: ProgressReporter | None = None) -> ValidationResult:
        progress = progress or NullProgress()
        context = truncate_to_tokens(text, self.context_tokens)

        valuation_date = None
        if self.date_aware:
            progress.update("Determining valuation date", 0)
            valuation_date = await self.extract_valuation_date(context)

        progress.update("Collecting candidate values", 10)
        by_metric = await self.collect_candidates(TARGET_METRICS, context, valuation_date, progress.span(10, 70))

        progress.update("Resolving conflicting values", 70)

        async def _resolve(_: int, metric: str):
            return await self.resolve(metric, by_metric[metric], context, valuation_date)

        resolved = await run_in_waves(list(TARGET_METRICS), _resolve, self.concurrency)
        resolutions = {r.metric: r for r, _ in resolved}
        conflicts = [c for _, c in resolved if c is not None]

        progress.update("Cross-validating enterprise and equity value", 85)
        cross = await self.cross_validate(context, resolutions, valuation_date)

        values = {metric: resolutions[metric].value for metric in TARGET_METRICS}
        relationships = check_relationships(values["revenue"], values["ebitda"], values["enterpriseValue"])
        for issue in relationships.issues:
            logger.warning("Relationship check: %s", issue)

        confidence = confidence_score(
            resolved=sum(v is not None for v in values.values()),
            total=len(TARGET_METRICS),
            cross_validation=cross,
            relationships=relationships,
            chosen=[r.chosen for r in resolutions.values() if r.value is not None],
        )
        progress.update("Validation complete", 100)
        logger.info("Enhanced validation: %d/%d metrics resolved, confidence %d%%",
                    sum(v is not None for v in values.values()), len(TARGET_METRICS), confidence)

        return ValidationResult(
            values=values,
            valuation_date=valuation_date,
            resolutions=resolutions,
            conflicts=conflicts,
            cross_validation=cross,
            relationships=relationships,
            confidence=confidence,
        )

    # ── Valuation date ────────────────────────────────────────────────────

    async def extract_valuation_date(self, context: str) -> Optional[str]:
        reply = ""
        try:
            reply = await self._ask(prompts.valuation_date_prompt(context), max_tokens=50)
        except Exception as e:
            logger.warning("Valuation-date prompt failed: %s", e)

        date = None
        if reply and "not_found" not in reply.lower():
            date = normalize_date(reply)
        if date is None:
            date = extract_with_patterns(context).valuation_date.date
        logger.info("Valuation date: %s", date or "unknown")
        return date

    # ── Candidates ────────────────────────────────────────────────────────

    def _methods(self, valuation_date: Optional[str]) -> list[str]:
        methods = ["primary", "secondary"]
        if self.date_aware and valuation_date:
            methods.append("targeted")
        return methods

    def _prompt(self, metric: str, method: str, context: str, valuation_date: Optional[str]) -> str:
        if method == "targeted":
            return prompts.targeted_prompt(metric, context, valuation_date)
        if method == "secondary":
            return prompts.secondary_prompt(metric, context)
        return prompts.primary_prompt(metric, context)

    async def ask_candidate(
        self,
        metric: str,
        method: str,
        context: str,
        valuation_date: Optional[str],
    ) -> Optional[Candidate]:
        try:
            reply = await self._ask(self._prompt(metric, method, context, valuation_date), max_tokens=300)
        except Exception as e:
            logger.warning("Candidate prompt %s/%s failed: %s", metric, method, e)
            return None

        value, evidence = parse_candidate_reply(reply)
        if value is None:
            logger.debug("%s/%s: no value", metric, method)
            return None
        candidate = Candidate(
            metric=metric,
            value=value,
            method=method,
            confidence=METHOD_CONFIDENCE[method],
            date_relevance=classify_relevance(evidence, valuation_date, targeted=method == "targeted"),
            evidence=evidence,
        )
        logger.debug("%s/%s: %s (%s)", metric, method, value, candidate.date_relevance.value)
        return candidate

    async def collect_candidates(
        self,
        metrics: Sequence[str],
        context: str,
        valuation_date: Optional[str],
        progress: ProgressReporter | None = None,
    ) -> dict[str, list[Candidate]]:
        """Run every (metric, prompt) pair in bounded waves; group and dedupe per metric."""
        progress = progress or NullProgress()
        tasks = [(metric, method) for metric in metrics for method in self._methods(valuation_date)]

        async def _ask(_: int, task: tuple[str, str]) -> Optional[Candidate]:
            return await self.ask_candidate(task[0], task[1], context, valuation_date)

        def _done(completed: int, total: int) -> None:
            progress.advance(completed, total, "Validating metrics")

        answers = await run_in_waves(tasks, _ask, self.concurrency, on_item_done=_done)

        grouped: dict[str, list[Candidate]] = {metric: [] for metric in metrics}
        for (metric, _), candidate in zip(tasks, answers):
            if candidate is not None:
                grouped[metric].append(candidate)
        return {metric: dedupe_candidates(cands) for metric, cands in grouped.items()}

    # ── Resolution ────────────────────────────────────────────────────────

    async def resolve(
        self,
        metric: str,
        candidates: Sequence[Candidate],
        context: str,
        valuation_date: Optional[str],
    ) -> tuple[MetricResolution, Optional[ConflictRecord]]:
        if not candidates:
            return MetricResolution(metric=metric), None

        if self.date_aware:
            remaining, ambiguous = filter_candidates(candidates)
        else:
            remaining, ambiguous = list(candidates), False
        if ambiguous:
            logger.info("%s: no candidate tied to the valuation date; keeping all at half confidence", metric)

        conflict = None
        if len(remaining) == 1:
            chosen = remaining[0]
        else:
            chosen, conflict = await self.arbitrate(metric, remaining, context, valuation_date)

        return MetricResolution(
            metric=metric,
            value=chosen.value,
            chosen=chosen,
            candidates=list(candidates),
            ambiguous=ambiguous,
        ), conflict

    async def arbitrate(
        self,
        metric: str,
        candidates: Sequence[Candidate],
        context: str,
        valuation_date: Optional[str],
    ) -> tuple[Candidate, ConflictRecord]:
        try:
            reply = await self._ask(
                prompts.arbitration_prompt(metric, candidates, context, valuation_date), max_tokens=200,
            )
            data = parse_json_object(reply) or {}
            choice = int(data.get("choice"))
            if 1 <= choice <= len(candidates):
                chosen = candidates[choice - 1]
                logger.info("%s: arbitration chose %s", metric, chosen.value)
                return chosen, ConflictRecord(
                    metric=metric,
                    candidates=list(candidates),
                    chosen=chosen,
                    resolution="arbitration",
                    reason=str(data.get("reason") or ""),
                )
            logger.info("%s: arbitration choice %s out of range", metric, choice)
        except Exception as e:
            logger.warning("%s: arbitration failed: %s", metric, e)

        chosen = highest_confidence(candidates)
        return chosen, ConflictRecord(
            metric=metric,
            candidates=list(candidates),
            chosen=chosen,
            resolution="highest_confidence",
            reason="arbitration inconclusive",
        )

    # ── Cross-validation ──────────────────────────────────────────────────

    async def cross_validate(
        self,
        context: str,
        resolutions: dict[str, MetricResolution],
        valuation_date: Optional[str],
    ) -> CrossValidation:
        """
        Check EV − equity is a plausible debt figure; re-validate the pair if not.

        Corrections are written back into *resolutions*.
        """
        ev_res = resolutions["enterpriseValue"]
        eq_res = resolutions["valueOfEquity"]
        stated_debt = resolutions["debtValue"].value if "debtValue" in resolutions else None
        ev, eq = ev_res.value, eq_res.value

        if ev is None or eq is None:
            return CrossValidation(status="not_applicable", implied_debt=stated_debt,
                                   reason="enterprise or equity value missing")
        if is_plausible_pair(ev, eq):
            return CrossValidation(status="consistent", implied_debt=ev - eq,
                                   original_enterprise_value=ev, original_equity_value=eq)

        logger.warning("Implied debt %.2f is implausible (EV=%.2f, equity=%.2f); re-validating pair", ev - eq, ev, eq)
        recollected = await self.collect_candidates(("enterpriseValue", "valueOfEquity"), context, valuation_date)
        ev_candidates = dedupe_candidates(recollected["enterpriseValue"] + [self._as_original(ev_res)])
        eq_candidates = dedupe_candidates(recollected["valueOfEquity"] + [self._as_original(eq_res)])

        pair = await self.choose_pair(ev_candidates, eq_candidates, context, valuation_date)
        if pair is not None:
            new_ev, new_eq, reason = pair
            ev_res.value, ev_res.chosen = new_ev.value, new_ev
            eq_res.value, eq_res.chosen = new_eq.value, new_eq
            logger.info("Cross-validation corrected pair to EV=%.2f, equity=%.2f", new_ev.value, new_eq.value)
            return CrossValidation(
                status="corrected",
                implied_debt=new_ev.value - new_eq.value,
                original_enterprise_value=ev,
                original_equity_value=eq,
                reason=reason,
            )

        negative = ev - eq < 0
        if negative:
            weaker = eq_res if eq_res.chosen.confidence <= ev_res.chosen.confidence else ev_res
            logger.warning("Negative debt unresolved; dropping %s=%.2f", weaker.metric, weaker.value)
            weaker.value = None
        return CrossValidation(
            status="unresolved",
            implied_debt=stated_debt,
            original_enterprise_value=ev,
            original_equity_value=eq,
            negative_debt_unresolved=negative,
            reason="no plausible enterprise/equity pair found",
        )

    @staticmethod
    def _as_original(resolution: MetricResolution) -> Candidate:
        chosen = resolution.chosen
        return Candidate(
            metric=resolution.metric,
            value=resolution.value,
            method="original",
            confidence=ORIGINAL_CONFIDENCE,
            date_relevance=chosen.date_relevance,
            evidence=chosen.evidence,
        )

    async def choose_pair(
        self,
        enterprise: Sequence[Candidate],
        equity: Sequence[Candidate],
        context: str,
        valuation_date: Optional[str],
    ) -> Optional[tuple[Candidate, Candidate, str]]:
        try:
            reply = await self._ask(prompts.pair_prompt(enterprise, equity, context, valuation_date), max_tokens=200)
            data = parse_json_object(reply) or {}
            i, j = int(data.get("enterpriseValue")), int(data.get("valueOfEquity"))
            if 1 <= i <= len(enterprise) and 1 <= j <= len(equity):
                ev, eq = enterprise[i - 1], equity[j - 1]
                if is_plausible_pair(ev.value, eq.value):
                    return ev, eq, str(data.get("reason") or "chosen by pair arbitration")
            logger.info("Pair arbitration returned no plausible pair")
        except Exception as e:
            logger.warning("Pair arbitration failed: %s", e)

        best = best_valid_pair(enterprise, equity)
        if best is None:
            return None
        return best[0], best[1], "closest plausible pair to the valuation date"
