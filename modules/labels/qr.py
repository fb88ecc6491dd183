# -*- coding: utf-8 -*-
"""
QR labels for parts.

Each code encodes ``<base>/qrcode/<part_id>``; scanning it opens the
checkout lookup for that part. Single labels are PNGs, bulk sheets are
US-letter PDFs laid out in a grid (4 rows, 1-5 columns).
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List
from urllib.parse import quote

import qrcode
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from errors import InvalidInput

MARGIN = 15 * mm
ROWS_PER_PAGE = 4
MAX_DESCRIPTION_LINES = 3


@dataclass(frozen=True)
class LabelPart:
    part_id: str
    description: str


def qr_url(part_id: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/qrcode/{quote(part_id, safe='')}"


def qr_image(data: str, box_size: int = 10, border: int = 2):
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white").convert("RGB")


def qr_png(part_id: str, base_url: str, box_size: int = 10, border: int = 2) -> bytes:
    bio = io.BytesIO()
    qr_image(qr_url(part_id, base_url), box_size, border).save(bio, format="PNG")
    return bio.getvalue()


def _qr_size(cols: int, col_w: float, row_h: float) -> float:
    """QR edge length in points; bigger codes when there are few columns."""
    fit = min(col_w - 8 * mm, row_h - 15 * mm)
    low, high = (50 * mm, 70 * mm) if cols <= 2 else (30 * mm, 60 * mm)
    return max(low, min(high, fit))


def bulk_qr_pdf(parts: Iterable[LabelPart], base_url: str, columns: int = 3) -> bytes:
    parts: List[LabelPart] = list(parts)
    if not parts:
        raise InvalidInput("No parts provided")

    page_w, page_h = letter
    cols = max(1, min(columns, 5))
    per_page = cols * ROWS_PER_PAGE
    col_w = (page_w - 2 * MARGIN) / cols
    row_h = (page_h - 2 * MARGIN) / ROWS_PER_PAGE
    qr_size = _qr_size(cols, col_w, row_h)
    qr_size_mm = qr_size / mm
    id_font = max(6, min(9, qr_size_mm / 6))
    desc_font = max(5, min(7, qr_size_mm / 8))
    text_width = min(qr_size, col_w - 6 * mm)

    bio = io.BytesIO()
    c = canvas.Canvas(bio, pagesize=letter)

    for i, part in enumerate(parts):
        slot = i % per_page
        if i and slot == 0:
            c.showPage()
        if i == 0:
            c.setFont("Helvetica", 8)
            c.setFillGray(0.5)
            plural = "s" if len(parts) != 1 else ""
            c.drawString(MARGIN, page_h - MARGIN + 5 * mm,
                         f"Generated: {date.today():%Y-%m-%d} - {len(parts)} part{plural} - {cols} columns")
            c.setFillGray(0)

        col, row = slot % cols, slot // cols
        x = MARGIN + col * col_w
        top = page_h - MARGIN - row * row_h
        qr_y = top - 5 * mm - qr_size
        img = qr_image(qr_url(part.part_id, base_url), box_size=10, border=1)
        c.drawImage(ImageReader(img), x + (col_w - qr_size) / 2, qr_y, qr_size, qr_size)

        center = x + col_w / 2
        id_y = qr_y - 4 * mm
        c.setFont("Helvetica-Bold", id_font)
        c.drawCentredString(center, id_y, part.part_id)

        c.setFont("Helvetica", desc_font)
        lines = simpleSplit(part.description or "", "Helvetica", desc_font, text_width)
        for n, line in enumerate(lines[:MAX_DESCRIPTION_LINES]):
            c.drawCentredString(center, id_y - 3.5 * mm - n * desc_font * 1.2, line)

    c.showPage()
    c.save()
    return bio.getvalue()
