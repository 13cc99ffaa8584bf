"""
Extraction adapter: uploaded file -> CandidateRecord.

The job pipeline only depends on IExtractionAdapter, so the LLM-backed
adapter below can be swapped for another extractor (or a fake in tests).
Any failure is raised as ExtractionFailure.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import ChatOllama
from pydantic import ValidationError

from invoice_intake.core.config import settings
from invoice_intake.core.exceptions import ExtractionFailure
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.services.document_text_service import DocumentTextService

logger = logging.getLogger(__name__)


class IExtractionAdapter(Protocol):
    async def extract(self, file_path: str) -> CandidateRecord:
        """Return the structured record or raise ExtractionFailure."""
        ...


DEFAULT_EXTRACTION_PROMPT = """
You are an expert at reading Indian GST purchase invoices.

Extract the following fields from the invoice text below.
Return ONLY valid JSON with these exact keys.
If a field is not found, return null for that field.

{{
    "invoice_number": "string or null",
    "invoice_date": "YYYY-MM-DD format or null",
    "supplier_name": "seller / vendor company name or null",
    "supplier_gstin": "15 character GSTIN of the seller or null",
    "subtotal": number or null,
    "cgst": number (0 if not applicable),
    "sgst": number (0 if not applicable),
    "igst": number (0 if not applicable),
    "total_amount": number or null,
    "items": [
        {{
            "name": "string",
            "hsn_code": "HSN/SAC code or null",
            "quantity": number,
            "unit_price": number,
            "gst_rate": number (e.g. 18 for 18%),
            "amount": number (line total before tax)
        }}
    ],
    "confidence_score": number between 0.0 and 1.0
}}

Important rules:
- All amounts must be numbers, not strings
- If CGST and SGST are present, IGST should be 0 and vice versa
- Extract EVERY line item; use 1 for quantity if not stated
- confidence_score should reflect how complete and legible the extraction is

Invoice Text:
{raw_text}
"""


def _num(val: object, default: float) -> float:
    if val is None:
        return default
    if isinstance(val, str):
        val = val.replace(",", "").strip()
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def _normalize_items(value: object) -> list[dict]:
    """Accept common LLM key variants and fill amount or unit price from the other."""
    if not isinstance(value, list):
        return []
    out: list[dict] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        qty = _num(item.get("quantity") or item.get("qty"), 1.0)
        unit = _num(item.get("unit_price") or item.get("rate") or item.get("price"), 0.0)
        amount = _num(
            item.get("amount") if item.get("amount") is not None else item.get("total"),
            0.0,
        )
        if amount == 0.0 and unit > 0 and qty > 0:
            amount = round(qty * unit, 2)
        if unit == 0.0 and amount > 0 and qty > 0:
            unit = round(amount / qty, 2)
        out.append({
            "name": str(item.get("name") or item.get("description") or item.get("item") or "").strip(),
            "hsn_code": item.get("hsn_code") or item.get("hsn") or item.get("sac"),
            "quantity": qty,
            "unit_price": unit,
            "gst_rate": _num(item.get("gst_rate") or item.get("tax_rate"), 0.0),
            "amount": amount,
        })
    return out


def _confidence_percent(value: object) -> float:
    score = _num(value, 0.0)
    if 0.0 <= score <= 1.0:
        score *= 100
    return max(0.0, min(100.0, round(score, 1)))


def to_candidate_record(result: dict) -> CandidateRecord:
    return CandidateRecord(
        invoice_number=result.get("invoice_number"),
        invoice_date=result.get("invoice_date"),
        counterparty_name=result.get("supplier_name") or result.get("vendor_name"),
        counterparty_tax_id=result.get("supplier_gstin") or result.get("gstin"),
        subtotal=result.get("subtotal"),
        cgst=result.get("cgst"),
        sgst=result.get("sgst"),
        igst=result.get("igst"),
        total_amount=result.get("total_amount"),
        items=_normalize_items(result.get("items") or result.get("line_items")),
        confidence=_confidence_percent(result.get("confidence_score")),
    )


def load_extraction_prompt(prompt_file: str | None) -> str:
    """
    An override file replaces the built-in prompt only when it exists and
    has a {raw_text} slot for the document text.
    """
    if not prompt_file:
        return DEFAULT_EXTRACTION_PROMPT
    path = Path(prompt_file)
    if not path.is_file():
        logger.warning("Prompt override %s is missing, keeping the built-in prompt", path)
        return DEFAULT_EXTRACTION_PROMPT
    text = path.read_text(encoding="utf-8")
    if "{raw_text}" not in text:
        logger.warning("Prompt override %s has no {raw_text} slot, ignoring it", path)
        return DEFAULT_EXTRACTION_PROMPT
    logger.info("Extraction prompt loaded from %s", path)
    return text


class LLMExtractionAdapter:
    """Document text (Docling / pdfplumber / Tesseract) -> Ollama -> CandidateRecord."""

    def __init__(self, text_service: DocumentTextService | None = None) -> None:
        self.text_service = text_service or DocumentTextService()
        # temperature=0 and format="json" keep the output deterministic and parseable
        llm = ChatOllama(
            model=settings.OLLAMA_MODEL,
            temperature=0,
            format="json",
            base_url=settings.OLLAMA_BASE_URL,
        )
        prompt = ChatPromptTemplate.from_template(
            load_extraction_prompt(settings.EXTRACTION_PROMPT_FILE)
        )
        self.chain = prompt | llm | JsonOutputParser()

    async def extract(self, file_path: str) -> CandidateRecord:
        raw_text = await asyncio.to_thread(self.text_service.extract_text, file_path)
        if not raw_text.strip():
            raise ExtractionFailure(
                "No text could be extracted from file", {"file_path": file_path}
            )

        try:
            result = await self.chain.ainvoke({"raw_text": raw_text})
        except Exception as e:
            raise ExtractionFailure(f"LLM extraction failed: {e}") from e
        if not isinstance(result, dict):
            raise ExtractionFailure("LLM returned no JSON object")

        try:
            record = to_candidate_record(result)
        except ValidationError as e:
            raise ExtractionFailure(f"Extracted data has an invalid shape: {e}") from e

        logger.info(
            "Extraction complete for %s: invoice=%s items=%d confidence=%.1f",
            file_path,
            record.invoice_number,
            len(record.items),
            record.confidence,
        )
        return record
