"""PDF grade card for one student in one class."""

from __future__ import annotations

import io
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from .exporters import styled_table


def render_grade_card(card: dict) -> bytes:
    """Render the dict built by `AnalyticsService.grade_card`."""
    buffer = io.BytesIO()
    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Grade card - {card['student_name']}")
    elements = [
        Paragraph("Grade Card", styles["Title"]),
        Paragraph(f"<b>Student:</b> {escape(card['student_name'])} ({escape(card['student_email'])})", styles["Normal"]),
        Paragraph(f"<b>Class:</b> {escape(card['class_name'])}", styles["Normal"]),
    ]
    if card.get("teacher_name"):
        elements.append(Paragraph(f"<b>Teacher:</b> {escape(card['teacher_name'])}", styles["Normal"]))
    elements.append(Spacer(1, 12))

    if card["quizzes"]:
        data = [["Quiz", "Score", "Percentage", "Submitted"]]
        for quiz in card["quizzes"]:
            submitted = quiz["submitted_at"].strftime("%Y-%m-%d") if quiz["submitted_at"] else ""
            data.append([quiz["title"], f"{quiz['score']}/{quiz['total_points']}", f"{quiz['percentage']:.2f}%", submitted])
        elements.append(styled_table(data, col_widths=[230, 80, 80, 90]))
    else:
        elements.append(Paragraph("No completed quizzes yet.", styles["Italic"]))

    elements.extend([
        Spacer(1, 12),
        Paragraph(f"<b>Average:</b> {card['average_percentage']:.2f}%", styles["Normal"]),
        Paragraph(f"<b>Class rank:</b> {card['rank']}", styles["Normal"]),
        Paragraph(f"Generated {card['generated_at'].strftime('%Y-%m-%d %H:%M')} UTC", styles["Italic"]),
    ])
    doc.build(elements)
    pdf_value = buffer.getvalue()
    buffer.close()
    return pdf_value
