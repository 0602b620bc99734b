"""Encode the export-resolution print sheet as JPEG or a one-page A4 PDF."""
from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from passportprint.core.errors import EncodingFailure
from passportprint.imaging.sheet import PrintSheet

logger = logging.getLogger(__name__)

JPEG_QUALITY = 95


def export_filename(quantity: int, ext: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"passport_sheet_{now:%Y-%m-%d_%H%M%S}_x{quantity}.{ext}"


def encode_jpeg(sheet: PrintSheet, quality: int = JPEG_QUALITY) -> bytes:
    buf = io.BytesIO()
    try:
        sheet.image.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True)
    except (OSError, ValueError) as e:
        raise EncodingFailure(f"JPEG encoding failed: {e}") from e
    return buf.getvalue()


def encode_pdf(sheet: PrintSheet) -> bytes:
    """One portrait A4 page with the sheet drawn full-bleed."""
    page_w, page_h = A4
    buf = io.BytesIO()
    try:
        jpeg = io.BytesIO(encode_jpeg(sheet))
        pdf = canvas.Canvas(buf, pagesize=A4)
        pdf.setTitle("Passport photo sheet")
        pdf.drawImage(ImageReader(jpeg), 0, 0, width=page_w, height=page_h)
        pdf.showPage()
        pdf.save()
    except EncodingFailure:
        raise
    except (OSError, ValueError) as e:
        raise EncodingFailure(f"PDF encoding failed: {e}") from e
    return buf.getvalue()


def save_jpeg(sheet: PrintSheet, path: str) -> str:
    data = encode_jpeg(sheet)
    with open(path, "wb") as f:
        f.write(data)
    logger.info("Saved JPEG sheet to %s (%d bytes)", path, len(data))
    return path


def save_pdf(sheet: PrintSheet, path: str) -> str:
    data = encode_pdf(sheet)
    with open(path, "wb") as f:
        f.write(data)
    logger.info("Saved PDF sheet to %s (%d bytes)", path, len(data))
    return path
