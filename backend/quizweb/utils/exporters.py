"""Render tabular reports as CSV or PDF bytes."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Any, List, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

HEADER_COLOR = colors.HexColor("#1e3a8a")
GRID_COLOR = colors.HexColor("#9ca3af")
STRIPE_COLOR = colors.HexColor("#f1f5f9")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return str(value)


def render_csv(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return buffer.getvalue().encode("utf-8")


def styled_table(data: List[List[Any]], col_widths=None) -> Table:
    """Wrap every cell in a Paragraph so long text flows inside the page."""
    styles = getSampleStyleSheet()
    header_style = ParagraphStyle("TableHeader", parent=styles["BodyText"], fontName="Helvetica-Bold",
                                  fontSize=9, textColor=colors.white)
    body_style = ParagraphStyle("TableBody", parent=styles["BodyText"], fontSize=8, leading=10)
    wrapped = []
    for idx, row in enumerate(data):
        style = header_style if idx == 0 else body_style
        wrapped.append([Paragraph(escape(_cell(cell)), style) for cell in row])
    table = Table(wrapped, colWidths=col_widths, repeatRows=1, hAlign="LEFT")
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.4, GRID_COLOR),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, STRIPE_COLOR]),
        ("LEFTPADDING", (0, 0), (-1, -1), 5),
        ("RIGHTPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table


def render_pdf(title: str, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> bytes:
    buffer = io.BytesIO()
    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=28, rightMargin=28, topMargin=28, bottomMargin=28,
                            title=title)
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    elements = [
        Paragraph(escape(title), styles["Title"]),
        Paragraph(f"Generated {generated}", styles["Normal"]),
        Spacer(1, 12),
    ]
    if rows:
        elements.append(styled_table([list(headers)] + [list(r) for r in rows]))
    else:
        elements.append(Paragraph("No data available.", styles["Italic"]))
    doc.build(elements)
    pdf_value = buffer.getvalue()
    buffer.close()
    return pdf_value
