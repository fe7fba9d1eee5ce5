"""
PDF rendering and text extraction with OCR fallback.
Works on in-memory document bytes fetched from the platform.
"""

import io
from typing import Tuple

import numpy as np
import pdfplumber
import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image

from moneybird_agent.config.logger import setup_logger

logger = setup_logger("DocumentReader", "document_reader.log")

PNG_SIGNATURE = b"\x89PNG"
JPEG_SIGNATURE = b"\xff\xd8\xff"


def is_pdf(data: bytes) -> bool:
    """A usable PDF is more than 100 bytes and starts with ``%PDF``."""
    return bool(data) and len(data) > 100 and data[:4] == b"%PDF"


def is_image(data: bytes) -> bool:
    return bool(data) and (data.startswith(PNG_SIGNATURE) or data.startswith(JPEG_SIGNATURE))


class DocumentReader:
    """
    Turns document bytes into something a model can read.

    Rendering and OCR need Poppler and Tesseract on the host. Failures are
    raised to the caller, which decides on the next fallback.
    """

    def __init__(self, dpi: int = 200):
        self.dpi = dpi

    def render_first_page(self, data: bytes) -> bytes:
        """
        Render page one of a PDF to PNG bytes.

        Image attachments (PNG/JPEG) are normalised to PNG without rendering.
        """
        if is_image(data):
            image = Image.open(io.BytesIO(data))
        else:
            pages = convert_from_bytes(data, dpi=self.dpi, first_page=1, last_page=1)
            if not pages:
                raise ValueError("Document has no pages to render")
            image = pages[0]

        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="PNG")
        logger.debug(f"Rendered first page ({image.width}x{image.height})")
        return buffer.getvalue()

    def extract_text(self, data: bytes) -> Tuple[str, float, str]:
        """
        Extract text from PDF bytes with OCR fallback.

        Returns:
            Tuple of (text, confidence, quality)
            - confidence: 0.0-1.0
            - quality: "excellent", "good", "acceptable", "poor" or "unreadable"
        """
        if not is_image(data):
            try:
                with pdfplumber.open(io.BytesIO(data)) as pdf:
                    text = "\n".join(
                        page_text for page_text in (page.extract_text() for page in pdf.pages) if page_text
                    )
                if text.strip():
                    return text.strip(), 0.95, "excellent"
            except Exception as e:
                logger.warning(f"Direct PDF text extraction failed: {e}")

        return self._ocr_extraction(data)

    def _ocr_extraction(self, data: bytes) -> Tuple[str, float, str]:
        """OCR every page (or the single image) and average word confidences."""
        try:
            if is_image(data):
                images = [Image.open(io.BytesIO(data))]
            else:
                images = convert_from_bytes(data, dpi=self.dpi)

            full_text = ""
            confidences = []
            for img in images:
                ocr = pytesseract.image_to_data(img.convert("L"), output_type=pytesseract.Output.DICT)
                words = [
                    (ocr["text"][i], float(ocr["conf"][i]))
                    for i in range(len(ocr["text"]))
                    if float(ocr["conf"][i]) > 0 and ocr["text"][i].strip()
                ]
                full_text += " ".join(word for word, _ in words) + "\n"
                confidences.append(np.mean([conf for _, conf in words]) / 100.0 if words else 0.0)

            avg_conf = float(np.mean(confidences)) if confidences else 0.0
            return full_text.strip(), avg_conf, self._assess_quality(avg_conf)

        except Exception as e:
            logger.warning(f"OCR extraction failed: {e}")
            return "", 0.0, "unreadable"

    def _assess_quality(self, confidence: float) -> str:
        if confidence >= 0.9:
            return "excellent"
        elif confidence >= 0.75:
            return "good"
        elif confidence >= 0.6:
            return "acceptable"
        else:
            return "poor"
