"""
Per-counterparty templates: learning and anomaly matching.

A template is a running statistical profile (frequency lists and online
means), not a trained model. It is read through the cache and written to
both the database and the cache. Learning and matching are best-effort:
when the database is unavailable a template reads as absent and a learn
call is dropped with an error log.
"""

import logging
import re
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable

from invoice_intake.core.cache import ICache
from invoice_intake.core.config import settings
from invoice_intake.core.exceptions import PersistenceUnavailable
from invoice_intake.core.locks import KeyedLock
from invoice_intake.repositories.unit_of_work import RepositoryProvider
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.template import (
    MAX_COMMON_VALUES,
    AnomalyReport,
    Reliability,
    TaxRegime,
    Template,
    TemplateInsights,
    TemplatePatterns,
    TemplateStatistics,
)

logger = logging.getLogger(__name__)

COLD_START_CONFIDENCE = 50
COLD_START_SUGGESTION = "No template available for this supplier - this is the first invoice"

PENALTY_IDENTIFIER_PATTERN = 10
PENALTY_ITEM_COUNT = 5
PENALTY_TOTAL_AMOUNT = 15
PENALTY_TAX_REGIME = 10
PENALTY_UNKNOWN_HSN_CODES = 10
PENALTY_UNKNOWN_ITEM_NAMES = 15

MAX_RELATIVE_DEVIATION = 0.5
LOW_ACCURACY_RATE = 70
HIGH_RELIABILITY_RATE = 90
LIMITED_HISTORY_COUNT = 5


def identifier_pattern(invoice_number: str) -> str:
    """'INV-2024-001' -> '^INV\\-\\d{4}\\-\\d{3}$'"""
    parts = re.split(r"(\d+)", invoice_number.strip())
    body = "".join(
        f"\\d{{{len(part)}}}" if part.isdigit() else re.escape(part)
        for part in parts
        if part
    )
    return f"^{body}$"


def detect_tax_regime(record: CandidateRecord) -> TaxRegime:
    if record.has_split_tax and record.has_consolidated_tax:
        return TaxRegime.MIXED
    if record.has_consolidated_tax:
        return TaxRegime.CONSOLIDATED
    return TaxRegime.SPLIT


def merge_frequencies(
    existing: list[str],
    counts: dict[str, int],
    observed: list[str],
    max_size: int = MAX_COMMON_VALUES,
) -> tuple[list[str], dict[str, int]]:
    """
    Add observed values to the frequency table and keep the top entries,
    most frequent first. Ties keep their previous order, new values last.
    """
    merged: dict[str, int] = {value: counts.get(value, 1) for value in existing}
    for value in observed:
        if value:
            merged[value] = merged.get(value, 0) + 1
    ranked = sorted(merged.items(), key=lambda kv: kv[1], reverse=True)[:max_size]
    return [value for value, _ in ranked], dict(ranked)


def online_mean(old_mean: float, count: int, new_value: float) -> float:
    return (old_mean * count + new_value) / (count + 1)


def _observed_codes(record: CandidateRecord) -> list[str]:
    return [item.hsn_code for item in record.items if item.hsn_code]


def _observed_names(record: CandidateRecord) -> list[str]:
    return [item.name.strip() for item in record.items if item.name.strip()]


class TemplateService:
    """
    Template store plus matcher.

    Reads may run concurrently. learn() holds a per-counterparty lock for the
    whole read-modify-write so two updates for one counterparty never interleave.
    """

    def __init__(
        self,
        repositories: RepositoryProvider,
        cache: ICache,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        learned_memory: int | None = None,
    ) -> None:
        self.repositories = repositories
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.TEMPLATE_CACHE_TTL_SECONDS
        self.clock = clock
        self.learned_memory = learned_memory or settings.TEMPLATE_LEARNED_MEMORY
        self._locks = KeyedLock()
        # Recently learned (counterparty_id, record_id), oldest first
        self._learned: OrderedDict[tuple[str, str], None] = OrderedDict()

    def _cache_key(self, counterparty_id: str) -> str:
        return f"{settings.TEMPLATE_CACHE_PREFIX}{counterparty_id}"

    def _remember_learned(self, key: tuple[str, str]) -> None:
        self._learned[key] = None
        self._learned.move_to_end(key)
        while len(self._learned) > self.learned_memory:
            self._learned.popitem(last=False)

    # ── Store ─────────────────────────────────────────────

    async def get_template(self, counterparty_id: str) -> Template | None:
        cached = await self.cache.get(self._cache_key(counterparty_id))
        if cached:
            return Template.model_validate(cached)

        try:
            async with self.repositories() as repos:
                data = await repos.counterparties.get_template(counterparty_id)
        except PersistenceUnavailable as e:
            logger.warning("Failed to get template for %s: %s", counterparty_id, e)
            return None

        if not data:
            return None
        template = Template.model_validate(data)
        await self.cache.set(
            self._cache_key(counterparty_id),
            template.model_dump(mode="json"),
            self.ttl_seconds,
        )
        return template

    async def save_template(self, template: Template) -> bool:
        payload = template.model_dump(mode="json")
        try:
            async with self.repositories() as repos:
                saved = await repos.counterparties.save_template(
                    template.counterparty_id, payload
                )
        except PersistenceUnavailable as e:
            logger.error("Failed to save template for %s: %s", template.counterparty_id, e)
            return False

        if not saved:
            logger.warning(
                "Counterparty %s not found, template not saved", template.counterparty_id
            )
            return False
        await self.cache.set(
            self._cache_key(template.counterparty_id), payload, self.ttl_seconds
        )
        return True

    async def list_templates(self) -> list[Template]:
        try:
            async with self.repositories() as repos:
                rows = await repos.counterparties.list_templates()
        except PersistenceUnavailable as e:
            logger.error("Failed to list templates: %s", e)
            return []
        return [Template.model_validate(row) for row in rows]

    # ── Learning ──────────────────────────────────────────

    def _new_template(
        self,
        record: CandidateRecord,
        counterparty_id: str,
        was_accurate: bool,
    ) -> Template:
        codes, code_counts = merge_frequencies([], {}, _observed_codes(record))
        names, name_counts = merge_frequencies([], {}, _observed_names(record))
        regime = detect_tax_regime(record)
        return Template(
            counterparty_id=counterparty_id,
            counterparty_name=record.counterparty_name or "",
            patterns=TemplatePatterns(
                identifier_pattern=(
                    identifier_pattern(record.invoice_number)
                    if record.invoice_number
                    else None
                ),
                common_hsn_codes=codes,
                hsn_code_counts=code_counts,
                common_item_names=names,
                item_name_counts=name_counts,
                avg_item_count=float(len(record.items)),
                avg_total_amount=record.total_amount,
                tax_regime=regime,
                tax_regime_counts={regime.value: 1},
            ),
            statistics=TemplateStatistics(
                total_processed=1,
                last_updated=self.clock(),
                accuracy_rate=100.0 if was_accurate else 0.0,
            ),
        )

    def _updated_template(
        self,
        template: Template,
        record: CandidateRecord,
        was_accurate: bool,
    ) -> Template:
        patterns = template.patterns.model_copy(deep=True)
        stats = template.statistics
        n = stats.total_processed

        patterns.common_hsn_codes, patterns.hsn_code_counts = merge_frequencies(
            patterns.common_hsn_codes, patterns.hsn_code_counts, _observed_codes(record)
        )
        patterns.common_item_names, patterns.item_name_counts = merge_frequencies(
            patterns.common_item_names, patterns.item_name_counts, _observed_names(record)
        )
        patterns.avg_item_count = online_mean(patterns.avg_item_count, n, len(record.items))
        patterns.avg_total_amount = online_mean(patterns.avg_total_amount, n, record.total_amount)

        regime = detect_tax_regime(record)
        regime_counts = dict(patterns.tax_regime_counts)
        regime_counts[regime.value] = regime_counts.get(regime.value, 0) + 1
        patterns.tax_regime_counts = regime_counts
        if regime_counts[regime.value] > regime_counts.get(patterns.tax_regime.value, 0):
            patterns.tax_regime = regime

        if patterns.identifier_pattern is None and record.invoice_number:
            patterns.identifier_pattern = identifier_pattern(record.invoice_number)

        return Template(
            counterparty_id=template.counterparty_id,
            counterparty_name=template.counterparty_name or record.counterparty_name or "",
            patterns=patterns,
            statistics=TemplateStatistics(
                total_processed=n + 1,
                last_updated=self.clock(),
                accuracy_rate=online_mean(
                    stats.accuracy_rate, n, 100.0 if was_accurate else 0.0
                ),
            ),
        )

    async def learn(
        self,
        record: CandidateRecord,
        counterparty_id: str,
        was_accurate: bool = True,
        record_id: str | None = None,
    ) -> Template | None:
        """
        Fold one approved record into the counterparty's template.

        When record_id is given, a second call with the same
        (counterparty_id, record_id) is ignored.
        """
        async with self._locks.hold(counterparty_id):
            if record_id is not None and (counterparty_id, record_id) in self._learned:
                logger.info(
                    "Record %s already learned for %s, skipping", record_id, counterparty_id
                )
                return None

            template = await self.get_template(counterparty_id)
            if template is None:
                template = self._new_template(record, counterparty_id, was_accurate)
            else:
                template = self._updated_template(template, record, was_accurate)

            if not await self.save_template(template):
                return None
            if record_id is not None:
                self._remember_learned((counterparty_id, record_id))

        logger.info(
            "Template learned for %s: n=%d avg_total=%.2f accuracy=%.1f",
            counterparty_id,
            template.statistics.total_processed,
            template.patterns.avg_total_amount,
            template.statistics.accuracy_rate,
        )
        return template

    # ── Matching ──────────────────────────────────────────

    async def match(self, record: CandidateRecord, counterparty_id: str) -> AnomalyReport:
        template = await self.get_template(counterparty_id)
        if template is None:
            return AnomalyReport(
                matches=True,
                anomalies=[],
                suggestions=[COLD_START_SUGGESTION],
                confidence=COLD_START_CONFIDENCE,
            )
        return match_against_template(record, template)

    async def get_insights(self, counterparty_id: str) -> TemplateInsights:
        template = await self.get_template(counterparty_id)
        if template is None:
            return TemplateInsights(
                counterparty_id=counterparty_id,
                reliability=Reliability.LOW,
                predictability=0,
                recommendations=[
                    "Insufficient data - process more invoices to build supplier profile"
                ],
            )

        accuracy = template.statistics.accuracy_rate
        count = template.statistics.total_processed
        recommendations: list[str] = []
        if accuracy >= HIGH_RELIABILITY_RATE:
            reliability = Reliability.HIGH
            recommendations.append(
                "High OCR accuracy - invoices from this supplier can be auto-approved"
            )
        elif accuracy >= LOW_ACCURACY_RATE:
            reliability = Reliability.MEDIUM
            recommendations.append("Moderate accuracy - quick review recommended")
        else:
            reliability = Reliability.LOW
            recommendations.append("Low accuracy - thorough manual review required")

        predictability = round(accuracy * 0.6 + min(100, count * 5) * 0.4)
        if count < LIMITED_HISTORY_COUNT:
            recommendations.append(
                "Limited history - insights will improve with more invoices"
            )

        return TemplateInsights(
            counterparty_id=counterparty_id,
            reliability=reliability,
            predictability=max(0, min(100, predictability)),
            recommendations=recommendations,
        )


def match_against_template(record: CandidateRecord, template: Template) -> AnomalyReport:
    """
    Independent additive penalties, every rule evaluated; score starts at
    100 and is clamped to [0, 100].
    """
    anomalies: list[str] = []
    suggestions: list[str] = []
    score = 100
    patterns = template.patterns

    if patterns.identifier_pattern:
        number = (record.invoice_number or "").strip()
        if not re.fullmatch(patterns.identifier_pattern, number):
            anomalies.append("Invoice number format differs from usual pattern")
            score -= PENALTY_IDENTIFIER_PATTERN

    item_count = len(record.items)
    if abs(item_count - patterns.avg_item_count) > patterns.avg_item_count * MAX_RELATIVE_DEVIATION:
        anomalies.append(
            f"Unusual item count: {item_count} items "
            f"(avg: {round(patterns.avg_item_count)})"
        )
        score -= PENALTY_ITEM_COUNT

    amount_diff = abs(record.total_amount - patterns.avg_total_amount)
    if amount_diff > patterns.avg_total_amount * MAX_RELATIVE_DEVIATION:
        anomalies.append(
            f"Unusual total amount: ₹{record.total_amount:,.2f} "
            f"(avg: ₹{patterns.avg_total_amount:,.2f})"
        )
        suggestions.append(
            "Verify the total amount - it differs significantly from past invoices"
        )
        score -= PENALTY_TOTAL_AMOUNT

    current_regime = detect_tax_regime(record)
    if patterns.tax_regime != TaxRegime.MIXED and current_regime != patterns.tax_regime:
        anomalies.append(
            f"GST type changed: Expected {patterns.tax_regime.value}, "
            f"found {current_regime.value}"
        )
        suggestions.append("Verify GST type - supplier location may have changed")
        score -= PENALTY_TAX_REGIME

    known_codes = set(patterns.common_hsn_codes)
    if known_codes and not any(code in known_codes for code in _observed_codes(record)):
        anomalies.append(
            "None of the HSN codes match previously seen codes from this supplier"
        )
        suggestions.append("This may be a new product category from this supplier")
        score -= PENALTY_UNKNOWN_HSN_CODES

    known_names = [name.lower() for name in patterns.common_item_names]
    record_names = [name.lower() for name in _observed_names(record)]
    has_common_item = any(
        name in known or known in name
        for name in record_names
        for known in known_names
    )
    if known_names and not has_common_item:
        anomalies.append("Item names do not match typical products from this supplier")
        score -= PENALTY_UNKNOWN_ITEM_NAMES

    if template.statistics.accuracy_rate < LOW_ACCURACY_RATE:
        suggestions.append(
            f"This supplier has {round(template.statistics.accuracy_rate)}% "
            f"OCR accuracy - review carefully"
        )
    if not anomalies:
        suggestions.append("Invoice matches expected patterns from this supplier")

    return AnomalyReport(
        matches=not anomalies,
        anomalies=anomalies,
        suggestions=suggestions,
        confidence=max(0, min(100, score)),
    )
