"""
CSV and PDF renderings of a company's people.
"""
import csv
import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import (
    Image as RLImage,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

logger = logging.getLogger(__name__)

CSV_HEADERS = ["First Name", "Last Name", "Email", "Phone", "Position", "Company", "Country", "City", "Active"]

PHOTO_SIZE = 40


def safe_name(name: Optional[str]) -> str:
    return re.sub(r"\s+", "_", name or "company")


def _ref_name(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("name") or ""
    return ""


def people_csv(people: List[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for p in people:
        writer.writerow([
            p.get("firstName") or "",
            p.get("lastName") or "",
            p.get("email") or "",
            p.get("phone") or "",
            p.get("position") or "",
            _ref_name(p.get("company")),
            _ref_name(p.get("country")),
            p.get("city") or "",
            "Yes" if p.get("isActive") else "No",
        ])
    return buf.getvalue()


def _initials(p: Dict[str, Any]) -> str:
    return ((p.get("firstName") or "")[:1] + (p.get("lastName") or "")[:1]).upper()


def _photo_cell(p: Dict[str, Any], storage_dir: Optional[str], style):
    photo = p.get("photo")
    if photo and storage_dir:
        path = Path(storage_dir) / photo
        if path.is_file():
            try:
                return RLImage(str(path), width=PHOTO_SIZE, height=PHOTO_SIZE)
            except OSError as e:
                logger.warning("Failed to draw image for PDF %s: %s", photo, e)
    return Paragraph(_initials(p) or "-", style)


def _two_columns(items: List[str]) -> List[List[str]]:
    half = (len(items) + 1) // 2
    left, right = items[:half], items[half:]
    return [[f"• {l}", f"• {right[i]}" if i < len(right) else ""] for i, l in enumerate(left)]


def people_pdf(company: Dict[str, Any], people: List[Dict[str, Any]], storage_dir: Optional[str] = None) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, rightMargin=50, leftMargin=50, topMargin=50, bottomMargin=50)
    styles = getSampleStyleSheet()
    title = ParagraphStyle(
        name="CompanyTitle",
        parent=styles["Title"],
        fontName="Helvetica-Bold",
        fontSize=22,
        alignment=0,
        textColor=HexColor("#000000"),
    )
    body = styles["Normal"]
    initials = ParagraphStyle(name="Initials", parent=body, alignment=1, fontSize=12)

    story = [Paragraph(company.get("name") or "company", title), Spacer(1, 6)]

    info = Table(
        [[f"Country: {_ref_name(company.get('country')) or 'N/A'}", f"Website: {company.get('website') or 'N/A'}"]],
        colWidths=[270, 225],
    )
    info.setStyle(TableStyle([("FONTSIZE", (0, 0), (-1, -1), 10), ("LEFTPADDING", (0, 0), (-1, -1), 0)]))
    story += [info, Spacer(1, 8)]

    for label, items in (("IP Addresses:", company.get("ipAddresses") or []),
                         ("Subdomains:", company.get("subdomains") or [])):
        story.append(Paragraph(label, body))
        if items:
            lst = Table(_two_columns(items), colWidths=[250, 245])
            lst.setStyle(TableStyle([("FONTSIZE", (0, 0), (-1, -1), 10)]))
            story.append(lst)
        else:
            story.append(Paragraph("N/A", body))
        story.append(Spacer(1, 6))

    rows = [["Photo", "Name", "Email", "Position"]]
    for p in people:
        rows.append([
            _photo_cell(p, storage_dir, initials),
            f"{p.get('firstName') or ''} {p.get('lastName') or ''}".strip(),
            p.get("email") or "",
            p.get("position") or "",
        ])
    table = Table(rows, colWidths=[60, 150, 170, 115], repeatRows=1)
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("LINEBELOW", (0, 0), (-1, 0), 0.5, HexColor("#e0e0e0")),
        ("GRID", (0, 1), (-1, -1), 0.5, HexColor("#f0f0f0")),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BACKGROUND", (0, 0), (-1, 0), colors.whitesmoke),
    ]))
    story += [Spacer(1, 10), table]

    doc.build(story)
    return buf.getvalue()
