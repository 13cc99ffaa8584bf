import logging

from invoice_intake.core.exceptions import PersistenceUnavailable
from invoice_intake.repositories.unit_of_work import RepositoryProvider
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.validation import (
    CorrectionSuggestion,
    DuplicateCheck,
    ValidationResult,
)

logger = logging.getLogger(__name__)

TAX_ID_SUGGEST_BELOW = 80
AMOUNTS_SUGGEST_BELOW = 90
TAX_ID_SUGGESTION_CONFIDENCE = 75
TOTAL_SUGGESTION_CONFIDENCE = 85
HSN_SUGGESTION_CONFIDENCE = 70
TOTAL_SUGGESTION_TOLERANCE = 1.0


class CorrectionService:
    """
    Proposes corrections for low-confidence fields from what is already on
    file. It never mutates the record; a database outage just means fewer
    suggestions.
    """

    def __init__(self, repositories: RepositoryProvider) -> None:
        self.repositories = repositories

    async def suggest(
        self,
        record: CandidateRecord,
        validation: ValidationResult,
    ) -> list[CorrectionSuggestion]:
        suggestions: list[CorrectionSuggestion] = []
        fields = validation.field_confidence

        try:
            async with self.repositories() as repos:
                # ── GSTIN from a similar counterparty ─────────────
                if record.counterparty_name and fields.tax_id < TAX_ID_SUGGEST_BELOW:
                    similar = await repos.counterparties.find_similar_with_tax_id(
                        record.counterparty_name
                    )
                    if similar and similar.tax_id and similar.tax_id != record.counterparty_tax_id:
                        suggestions.append(
                            CorrectionSuggestion(
                                field="counterparty_tax_id",
                                original_value=record.counterparty_tax_id,
                                suggested_value=similar.tax_id,
                                reason=f'Similar supplier "{similar.name}" has GSTIN: {similar.tax_id}',
                                confidence=TAX_ID_SUGGESTION_CONFIDENCE,
                            )
                        )

                # ── HSN codes from previously approved items ──────
                for index, item in enumerate(record.items):
                    if item.hsn_code or not item.name.strip():
                        continue
                    code = await repos.records.find_hsn_code_for_item(item.name)
                    if code:
                        suggestions.append(
                            CorrectionSuggestion(
                                field=f"items[{index}].hsn_code",
                                original_value=None,
                                suggested_value=code,
                                reason=f'Similar product "{item.name}" typically uses HSN: {code}',
                                confidence=HSN_SUGGESTION_CONFIDENCE,
                            )
                        )
        except PersistenceUnavailable as e:
            logger.warning("Correction lookups skipped, database unavailable: %s", e)

        # ── Total recomputed from line items and tax ──────────
        if fields.amounts < AMOUNTS_SUGGEST_BELOW:
            calculated_total = round(record.recomputed_total, 2)
            if abs(calculated_total - record.total_amount) > TOTAL_SUGGESTION_TOLERANCE:
                suggestions.append(
                    CorrectionSuggestion(
                        field="total_amount",
                        original_value=record.total_amount,
                        suggested_value=calculated_total,
                        reason="Calculated from line items and GST amounts",
                        confidence=TOTAL_SUGGESTION_CONFIDENCE,
                    )
                )

        logger.info(
            "Generated %d correction suggestions for %s",
            len(suggestions),
            record.invoice_number,
        )
        return suggestions

    async def check_duplicate(self, record: CandidateRecord) -> DuplicateCheck:
        if not record.invoice_number or not record.counterparty_name:
            return DuplicateCheck()
        try:
            async with self.repositories() as repos:
                existing = await repos.records.find_duplicate(
                    record.invoice_number, record.counterparty_name
                )
        except PersistenceUnavailable as e:
            logger.warning("Duplicate check skipped, database unavailable: %s", e)
            return DuplicateCheck()
        if existing is None:
            return DuplicateCheck()
        logger.warning(
            "Duplicate invoice %s from %s (approved record %s)",
            record.invoice_number,
            record.counterparty_name,
            existing.id,
        )
        return DuplicateCheck(is_duplicate=True, existing_record_id=existing.id)

    async def resolve_counterparty_id(self, record: CandidateRecord) -> str | None:
        """Known counterparty for the record, by GSTIN first, then by name."""
        try:
            async with self.repositories() as repos:
                counterparty = None
                if record.counterparty_tax_id:
                    counterparty = await repos.counterparties.find_by_tax_id(
                        record.counterparty_tax_id
                    )
                if counterparty is None and record.counterparty_name:
                    counterparty = await repos.counterparties.find_by_name(
                        record.counterparty_name
                    )
        except PersistenceUnavailable as e:
            logger.warning("Counterparty lookup skipped, database unavailable: %s", e)
            return None
        return counterparty.id if counterparty else None
