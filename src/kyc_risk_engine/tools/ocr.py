import logging
import os
import re
from typing import Optional

import cv2
import filetype
import fitz  # PyMuPDF
import numpy as np
import pytesseract
from PIL import Image

from ..errors import CollaboratorTimeoutError, DocumentProcessingError

LOGGER = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/tiff", "application/pdf"}
MAX_FILE_SIZE_MB = 10
OCR_TIMEOUT_SECONDS = float(os.getenv("KYC_OCR_TIMEOUT_SECONDS", "30"))


def detect_mime(data: bytes) -> str:
    """Signature-based MIME sniffing; unknown content is octet-stream."""
    kind = filetype.guess(data)
    if kind is not None and kind.mime:
        return kind.mime
    return "application/octet-stream"


def _preprocess_for_ocr(img_bgr) -> str:
    """
    Preprocess with OpenCV and run Tesseract. Returns raw OCR text (str).
    """
    gray = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2GRAY)
    # Otsu binarization
    _, bw = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    try:
        return pytesseract.image_to_string(Image.fromarray(bw), timeout=OCR_TIMEOUT_SECONDS)
    except RuntimeError as exc:
        # on timeout pytesseract kills tesseract and raises a plain RuntimeError
        if isinstance(exc, pytesseract.TesseractError) or "timeout" not in str(exc):
            raise
        raise CollaboratorTimeoutError(
            f"OCR did not finish within {OCR_TIMEOUT_SECONDS:g}s", {"stage": "ocr"}
        ) from exc


def _decode_image_to_bgr(data: bytes):
    buf = np.frombuffer(data, dtype=np.uint8)
    img_bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img_bgr is None:
        raise DocumentProcessingError("Unable to read image (possibly corrupted or unsupported).")
    return img_bgr


def _render_pdf_first_page_to_bgr(data: bytes):
    """
    Render first page of a PDF to an OpenCV BGR image using PyMuPDF.
    """
    with fitz.open(stream=data, filetype="pdf") as doc:
        if doc.page_count == 0:
            raise DocumentProcessingError("PDF has no pages.")
        page = doc.load_page(0)
        # 2x zoom for a higher-res raster
        pix = page.get_pixmap(matrix=fitz.Matrix(2, 2), alpha=False)
        img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
    # PyMuPDF gives RGB; OpenCV wants BGR
    return cv2.cvtColor(img, cv2.COLOR_RGB2BGR)


def validate_ocr_text_safety(text: str) -> str:
    """
    Validate OCR-extracted text for malicious or unsafe content.
    Raises DocumentProcessingError if unsafe patterns are detected.
    Returns sanitized text (str).
    """
    suspicious_patterns = [
        r"<script.*?>", r"</script>",
        r"(?i)system\(", r"(?i)os\.system",
        r"(?i)subprocess", r"(?i)eval\(",
        r"(?i)cmd\.exe",
        r"(?i)rm\s+-rf",
        r"(?i)curl\s+http", r"(?i)wget\s+http",
        r"(?i)base64\s+decode",
        r"(?i)import\s+os", r"(?i)import\s+sys",
    ]
    for pattern in suspicious_patterns:
        if re.search(pattern, text):
            raise DocumentProcessingError(
                "Malicious content detected in document text", {"pattern": pattern}
            )

    # Drop control chars except newlines; collapse runs of spaces
    sanitized = re.sub(r"[\x00-\x09\x0B-\x1F\x7F]", "", text)
    sanitized = re.sub(r"[ \t]+", " ", sanitized)
    return sanitized.strip()


class OcrTextExtractor:
    """Bytes in, sanitized text out. Images and the first page of PDFs."""

    def __init__(self, max_file_size_mb: Optional[float] = None) -> None:
        self.max_file_size_mb = max_file_size_mb or MAX_FILE_SIZE_MB

    def extract_text(self, data: bytes) -> str:
        if not data:
            raise DocumentProcessingError("Empty document")

        file_size_mb = len(data) / (1024 * 1024)
        if file_size_mb > self.max_file_size_mb:
            raise DocumentProcessingError(
                f"File too large ({file_size_mb:.2f} MB). Limit is {self.max_file_size_mb} MB."
            )

        mime_type = detect_mime(data)
        if mime_type not in ALLOWED_MIME_TYPES:
            raise DocumentProcessingError(f"Unsupported file type: {mime_type}")

        if mime_type == "application/pdf":
            img_bgr = _render_pdf_first_page_to_bgr(data)
        else:
            img_bgr = _decode_image_to_bgr(data)

        try:
            raw_text = _preprocess_for_ocr(img_bgr)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise DocumentProcessingError(f"OCR failed: {exc}") from exc

        text = validate_ocr_text_safety(raw_text)
        LOGGER.info("OCR extracted %d chars from %s (%.2f MB)", len(text), mime_type, file_size_mb)
        return text


__all__ = ["OcrTextExtractor", "detect_mime", "validate_ocr_text_safety"]
