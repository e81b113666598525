"""
src/cfo_agent/tools/exports.py - render agent findings to PDF (ReportLab)

Provides:
- export_report_pdf(summary, metrics, path): a one-page report with a metrics table
- generate_pdf_report(summary, metrics, *, output_dir): tool entry point, picks the file name

Notes:
- Minimal layout for the MVP. Branding and templates can come later.
- Nested metric values are shown as compact text.
"""


import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle


def _format_metric(value: Any) -> str:

    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)

    return str(value)


# --- PDF -----------------------------------------------------------------------
def export_report_pdf(summary: str, metrics: Dict[str, Any], path: Path) -> Path:
    """
    Export a financial report to PDF.

    Args:
        summary: Executive summary paragraph
        metrics: metric name -> value, one table row each
        path: file path for saving

    Returns: path
    """

    doc = SimpleDocTemplate(str(path), pagesize=A4)
    styles = getSampleStyleSheet()
    elements = []

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    elements.append(Paragraph("<b>Financial Report</b>", styles["Title"]))
    elements.append(Paragraph(f"Generated: {generated}", styles["Normal"]))
    elements.append(Spacer(1, 12))
    elements.append(Paragraph(escape(summary), styles["BodyText"]))
    elements.append(Spacer(1, 12))

    # Metrics table
    data = [["Metric", "Value"]]
    for name, value in metrics.items():
        data.append([str(name), _format_metric(value)])

    table = Table(data, colWidths=[220, 260])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
    ]))
    elements.append(table)

    doc.build(elements)

    return path

def generate_pdf_report(*, summary: str, metrics: Dict[str, Any], output_dir: Path) -> Dict[str, Any]:
    """Tool entry point: write the report under `output_dir` and return where it went."""

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"report_{uuid.uuid4().hex[:10]}.pdf"
    export_report_pdf(summary, metrics, path)

    return {
        "success": True,
        "message": "PDF Report generated successfully. Ready for download.",
        "path": str(path),
    }
