from __future__ import annotations
from typing import Iterable, List, Sequence
import csv
import io

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from .models import Journal, Publication

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"

# (header, width, example) - headers are the canonical names the importer maps
PUBLICATION_TEMPLATE_COLUMNS = [
    ("Title", 50, "Example: Outcomes of catheter ablation in elderly patients"),
    ("Authors", 40, "Zhang San; Li Si; Wang Wu"),
    ("Journal", 40, "Nature Medicine"),
    ("ISSN", 15, "1078-8956"),
    ("Year", 10, 2024),
    ("Department", 20, "CARDIO"),
    ("Volume", 10, "30"),
    ("Issue", 10, "1"),
    ("Pages", 15, "123-130"),
    ("DOI", 30, "10.1038/s41591-024-00001-1"),
    ("PMID", 15, "38000001"),
    ("WOS", 20, "WOS:001234567800001"),
    ("Document Type", 15, "Article"),
]

JOURNAL_TEMPLATE_COLUMNS = [
    ("Name", 40, "Nature Medicine"),
    ("ISSN", 15, "1078-8956"),
    ("Impact Factor", 15, 58.7),
    ("Quartile", 10, "Q1"),
    ("Category", 30, "MEDICINE, RESEARCH & EXPERIMENTAL"),
    ("Publisher", 25, "Nature Portfolio"),
    ("Year", 10, 2024),
]

PUBLICATION_EXPORT_HEADERS = [
    "ID", "Title", "Authors", "Journal", "Impact Factor", "Quartile", "Year",
    "Department", "Volume", "Issue", "Pages", "DOI", "PMID", "WOS", "Document Type",
]

JOURNAL_EXPORT_HEADERS = [
    "ID", "Name", "ISSN", "Impact Factor", "Quartile", "Category", "Publisher", "Year",
]

_HEADER_FONT = Font(bold=True, color="FFFFFFFF")
_HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF4472C4")


def _style_header(ws, widths: Sequence[int]) -> None:
    for idx, cell in enumerate(ws[1]):
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.column_dimensions[cell.column_letter].width = widths[idx]
    ws.freeze_panes = "A2"


def build_template(columns: List[tuple], sheet_title: str) -> bytes:
    """Empty import sheet plus an example sheet, so the example never gets imported."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    ws.append([c[0] for c in columns])
    _style_header(ws, [c[1] for c in columns])

    example = wb.create_sheet("Example")
    example.append([c[0] for c in columns])
    example.append([c[2] for c in columns])
    _style_header(example, [c[1] for c in columns])

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def publication_template() -> bytes:
    return build_template(PUBLICATION_TEMPLATE_COLUMNS, "Publications")


def journal_template() -> bytes:
    return build_template(JOURNAL_TEMPLATE_COLUMNS, "Journals")


def publication_rows(pubs: Iterable[Publication]) -> List[list]:
    rows = []
    for p in pubs:
        rows.append([
            p.id,
            p.title,
            p.authors,
            p.journal.name if p.journal else '',
            float(p.journal.impact_factor) if p.journal else '',
            p.journal.quartile if p.journal else '',
            p.publish_year,
            p.department.name if p.department else '',
            p.volume or '',
            p.issue or '',
            p.pages or '',
            p.doi or '',
            p.pmid or '',
            p.wos_number or '',
            p.document_type or '',
        ])
    return rows


def journal_rows(journals: Iterable[Journal]) -> List[list]:
    return [
        [j.id, j.name, j.issn or '', float(j.impact_factor), j.quartile, j.category, j.publisher or '', j.year]
        for j in journals
    ]


def to_xlsx(headers: List[str], rows: List[list], sheet_title: str = "Sheet1") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    ws.append(headers)
    for r in rows:
        ws.append(r)
    _style_header(ws, [max(12, len(h) + 4) for h in headers])
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def to_csv(headers: List[str], rows: List[list]) -> bytes:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(headers)
    w.writerows(rows)
    # BOM so Excel opens non-Latin text correctly
    return buf.getvalue().encode("utf-8-sig")
