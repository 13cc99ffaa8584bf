"""
Plain-text extraction from uploaded documents.

Order of attempts:
1. Docling (layout-aware, handles PDFs and images) when OCR_USE_DOCLING is on
2. pdfplumber for PDFs with a text layer
3. Tesseract for scanned PDFs (pages rendered with pymupdf) and images

Returns an empty string when nothing could be read; the caller decides
whether that is a failure.
"""

import logging
from pathlib import Path

import fitz  # pymupdf
import pdfplumber
import pytesseract
from PIL import Image

from invoice_intake.core.config import settings

logger = logging.getLogger(__name__)

OCR_RENDER_DPI = 200
# PSM 3 = fully automatic page segmentation (works well for invoices)
TESSERACT_CONFIG = "--psm 3"


class DocumentTextService:

    def __init__(self, use_docling: bool | None = None) -> None:
        self.use_docling = settings.OCR_USE_DOCLING if use_docling is None else use_docling
        self._converter = self._create_converter() if self.use_docling else None

    def _create_converter(self):
        try:
            from docling.document_converter import DocumentConverter

            return DocumentConverter()
        except Exception as e:
            logger.warning("Docling DocumentConverter not available: %s", e)
            return None

    def extract_text(self, file_path: str) -> str:
        path = Path(file_path)
        if not path.exists():
            logger.warning("Document not found: %s", file_path)
            return ""

        text = self._extract_with_docling(path)
        if text:
            return text

        if path.suffix.lower() == ".pdf":
            text = self._extract_pdf_text_layer(path)
            if not text:
                logger.info("No text layer in PDF, using Tesseract: %s", file_path)
                text = self._ocr_pdf_pages(path)
        else:
            text = self._ocr_image(path)

        logger.info("Extracted %d characters from %s", len(text), file_path)
        return text

    def _extract_with_docling(self, path: Path) -> str:
        if self._converter is None:
            return ""
        try:
            result = self._converter.convert(str(path))
        except Exception as e:
            logger.warning("Docling conversion failed for %s: %s", path, e)
            return ""
        if result.document is None:
            logger.warning("Docling returned no document for: %s", path)
            return ""
        text = (result.document.export_to_markdown() or "").strip()
        preview_len = 500
        logger.info(
            "Docling result for %s: length=%d chars, preview=%s",
            path,
            len(text),
            repr(text[:preview_len] + ("..." if len(text) > preview_len else "")),
        )
        return text

    def _extract_pdf_text_layer(self, path: Path) -> str:
        with pdfplumber.open(str(path)) as pdf:
            return "\n".join(page.extract_text() or "" for page in pdf.pages).strip()

    def _ocr_pdf_pages(self, path: Path) -> str:
        parts: list[str] = []
        doc = fitz.open(str(path))
        try:
            for page in doc:
                pix = page.get_pixmap(dpi=OCR_RENDER_DPI, alpha=False, colorspace=fitz.csRGB)
                image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
                text = pytesseract.image_to_string(image.convert("L"), config=TESSERACT_CONFIG)
                if text.strip():
                    parts.append(text.strip())
        finally:
            doc.close()
        return "\n\n".join(parts)

    def _ocr_image(self, path: Path) -> str:
        # Grayscale often improves Tesseract results
        with Image.open(path) as image:
            gray = image.convert("L")
        return pytesseract.image_to_string(gray, config=TESSERACT_CONFIG).strip()
