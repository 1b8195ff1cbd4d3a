"""Spreadsheet import for publications and journals.

A job moves RECEIVED -> PARSING -> VALIDATING -> COMPLETED. Every data row
ends up INSERTED, DUPLICATE or FAILED; a failing row is recorded with its
spreadsheet row number and never aborts the batch, and rows already inserted
stay inserted.
"""
from __future__ import annotations
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum as PyEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple
import io
import logging
import os
import re
import zipfile

import pandas as pd
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import FileUploadError
from .models import Department, Journal, Publication, Quartile, User
from .schemas import DOI_PATTERN, ImportErrorOut, ImportResultOut, MIN_YEAR, PMID_PATTERN, WOS_PATTERN

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".xlsx", ".xls", ".csv"}
ISSN_RE = re.compile(r"^\d{4}-\d{3}[\dX]$")
DOI_RE = re.compile(DOI_PATTERN)
PMID_RE = re.compile(PMID_PATTERN)
WOS_RE = re.compile(WOS_PATTERN)

# Header aliases (English / Chinese), compared lower-cased and trimmed
PUB_ALIASES: Dict[str, set[str]] = {
    'title': {'title', '文章标题', '标题', '题目', '文献标题'},
    'authors': {'authors', 'author', '作者', '作者列表'},
    'journal': {'journal', 'journal name', 'journalname', 'source', '期刊名称', '期刊', '期刊名'},
    'issn': {'issn'},
    'publish_year': {'year', 'publish year', 'publishyear', 'publish_year', '发表年份', '年份', '年'},
    'department': {'department', 'dept', 'department name', 'departmentname', '科室', '科室名称', '部门'},
    'volume': {'volume', 'vol', '卷', '卷号'},
    'issue': {'issue', 'no', '期', '期号'},
    'pages': {'pages', 'page', '页码', '页数'},
    'doi': {'doi'},
    'pmid': {'pmid', 'pubmed id'},
    'wos_number': {'wos', 'wos number', 'wosnumber', 'wos号'},
    'document_type': {'document type', 'documenttype', 'type', '文献类型', '文档类型'},
}

JOURNAL_ALIASES: Dict[str, set[str]] = {
    'name': {'name', 'journal', 'journal name', 'journalname', '期刊名称', '期刊名'},
    'issn': {'issn'},
    'impact_factor': {'impact factor', 'impactfactor', 'impact_factor', 'if', '影响因子', '影响因數'},
    'quartile': {'quartile', 'jcr', 'jcr quartile', '分区', '分區', 'jcr分区'},
    'category': {'category', 'subject', '类别', '類別', '学科', '學科'},
    'publisher': {'publisher', '出版商'},
    'year': {'year', '年份', '数据年份', '數據年份'},
}

PUB_MAX_LENGTHS = {
    'title': 500,
    'authors': 2000,
    'volume': 20,
    'issue': 20,
    'pages': 50,
    'doi': 100,
    'pmid': 20,
    'wos_number': 50,
    'document_type': 50,
}


class ImportState(str, PyEnum):
    RECEIVED = "received"
    PARSING = "parsing"
    VALIDATING = "validating"
    COMPLETED = "completed"


class RowOutcome(str, PyEnum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class RowError(Exception):
    """A single row broke one rule; carries what the caller reports back."""

    def __init__(self, field: Optional[str], rule: str, message: str):
        super().__init__(message)
        self.field = field
        self.rule = rule
        self.message = message


# -----------------------------
# Parsing helpers
# -----------------------------
def _clean(s: Optional[object]) -> str:
    """Convert cell to clean string; treat NaN/None/'nan' as empty."""
    if s is None or (isinstance(s, float) and pd.isna(s)):
        return ''
    if isinstance(s, float) and s.is_integer():
        s = int(s)
    txt = str(s).replace('\xa0', ' ').strip()
    if txt.lower() in ('nan', 'none', 'nat'):
        return ''
    return txt


def norm_col(col: object, aliases: Dict[str, set[str]]) -> str:
    c = str(col).replace('\xa0', ' ').strip().lower()
    for key, names in aliases.items():
        if c in names:
            return key
    return c


def check_upload(filename: Optional[str], size: int) -> str:
    settings = get_settings()
    ext = os.path.splitext(filename or '')[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise FileUploadError(
            "Only Excel (.xlsx, .xls) and CSV files are supported",
            {"filename": filename, "allowed": sorted(ALLOWED_EXTENSIONS)},
        )
    if size == 0:
        raise FileUploadError("Uploaded file is empty", {"filename": filename})
    if size > settings.UPLOAD_MAX_BYTES:
        raise FileUploadError(
            "Uploaded file exceeds the size limit",
            {"filename": filename, "maxBytes": settings.UPLOAD_MAX_BYTES},
            status_code=413,
        )
    return ext


def read_table(content: bytes, ext: str) -> pd.DataFrame:
    try:
        if ext == ".csv":
            return pd.read_csv(
                io.BytesIO(content),
                dtype=object,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig",
            )
        # first sheet only
        return pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=object)
    except ImportError as e:
        raise FileUploadError(f"Spreadsheet format not readable on this server: {e}")
    except (ValueError, OSError, KeyError, zipfile.BadZipFile, UnicodeDecodeError) as e:
        raise FileUploadError(f"Could not parse spreadsheet: {e}")


def iter_rows(df: pd.DataFrame, aliases: Dict[str, set[str]]) -> Iterator[Tuple[int, Dict[str, str]]]:
    """Yield (spreadsheet row number, cleaned record); header is row 1."""
    df = df.rename(columns=lambda c: norm_col(c, aliases))
    columns = list(df.columns)
    for pos, values in enumerate(df.itertuples(index=False, name=None)):
        record: Dict[str, str] = {}
        for col, value in zip(columns, values):
            txt = _clean(value)
            # first non-empty column wins when two headers alias to one field
            if txt and col not in record:
                record[col] = txt
        if not record:
            continue
        yield pos + 2, record


def _parse_year(value: str, field: str, latest: int) -> int:
    # Decimal keeps "2024.0" from spreadsheets and refuses inf or nan
    try:
        number = Decimal(value)
    except InvalidOperation:
        number = None
    if number is None or not number.is_finite() or number != number.to_integral_value():
        raise RowError(field, "invalid_year", f"{field} must be an integer year, got '{value}'")
    if not MIN_YEAR <= number <= latest:
        raise RowError(field, "year_range", f"{field} must be between {MIN_YEAR} and {latest}")
    return int(number)


def _require(record: Dict[str, str], field: str) -> str:
    value = record.get(field, '')
    if not value:
        raise RowError(field, "required", f"{field} is required")
    return value


# -----------------------------
# Reference resolution
# -----------------------------
def resolve_journal(db: Session, name: Optional[str], issn: Optional[str], year: Optional[int] = None) -> Optional[Journal]:
    """ISSN first, then case-insensitive exact name.

    Among several rows for the same journal, the one whose data year matches
    the publication year wins, then the most recent year.
    """
    def _pick(cond):
        stmt = select(Journal).where(cond)
        if year is not None:
            stmt = stmt.order_by(case((Journal.year == year, 0), else_=1))
        stmt = stmt.order_by(Journal.year.desc(), Journal.id.asc())
        return db.execute(stmt.limit(1)).scalars().first()

    if issn:
        found = _pick(Journal.issn == issn.strip().upper())
        if found:
            return found
    if name:
        nm = name.strip()
        found = _pick(Journal.name == nm)
        if found:
            return found
        return _pick(func.lower(Journal.name) == nm.lower())
    return None


def resolve_department(db: Session, value: Optional[str]) -> Optional[Department]:
    """Exact name, then code, then case-insensitive name."""
    if not value:
        return None
    v = value.strip()
    dept = db.execute(select(Department).where(Department.name == v).limit(1)).scalars().first()
    if dept:
        return dept
    dept = db.execute(select(Department).where(func.upper(Department.code) == v.upper()).limit(1)).scalars().first()
    if dept:
        return dept
    return db.execute(select(Department).where(func.lower(Department.name) == v.lower()).limit(1)).scalars().first()


def find_duplicate_publication(
    db: Session,
    title: str,
    journal_id: int,
    publish_year: int,
    doi: Optional[str] = None,
    pmid: Optional[str] = None,
    wos_number: Optional[str] = None,
    exclude_id: Optional[int] = None,
) -> Optional[int]:
    """Id of a stored publication this one would duplicate, if any.

    Same title (case-insensitive), journal and year, or the same DOI
    (case-insensitive), PMID or WOS number.
    """
    same = [
        (func.lower(Publication.title) == title.strip().lower())
        & (Publication.journal_id == journal_id)
        & (Publication.publish_year == publish_year)
    ]
    if doi:
        same.append(func.lower(Publication.doi) == doi.strip().lower())
    if pmid:
        same.append(Publication.pmid == pmid.strip())
    if wos_number:
        same.append(func.upper(Publication.wos_number) == wos_number.strip().upper())
    stmt = select(Publication.id).where(or_(*same))
    if exclude_id is not None:
        stmt = stmt.where(Publication.id != exclude_id)
    return db.execute(stmt.limit(1)).scalars().first()


# -----------------------------
# Jobs
# -----------------------------
class ImportJob:
    """Row-by-row import with per-row failure isolation.

    Subclasses supply the alias table and ``process_row``; ``process_row``
    raises ``RowError`` for a rule violation, returns ``RowOutcome.DUPLICATE``
    for a skipped duplicate, and commits and returns ``RowOutcome.INSERTED``
    otherwise.
    """

    aliases: Dict[str, set[str]] = {}
    label = "rows"

    def __init__(self, db: Session):
        self.db = db
        self.state = ImportState.RECEIVED
        self.success = 0
        self.failed = 0
        self.duplicates = 0
        self.errors: List[ImportErrorOut] = []
        self.outcomes: Dict[int, RowOutcome] = {}

    def run(self, filename: Optional[str], content: bytes) -> ImportResultOut:
        ext = check_upload(filename, len(content))
        self._transition(ImportState.PARSING)
        df = read_table(content, ext)
        if df.columns.empty:
            raise FileUploadError("Spreadsheet has no header row", {"filename": filename})
        rows = list(iter_rows(df, self.aliases))
        if not rows:
            raise FileUploadError("Spreadsheet has no data rows", {"filename": filename})
        self._transition(ImportState.VALIDATING)
        for row_number, record in rows:
            self._process(row_number, record)
        self._transition(ImportState.COMPLETED)
        logger.info(
            "Imported %s from %s: success=%d failed=%d duplicates=%d",
            self.label, filename, self.success, self.failed, self.duplicates,
        )
        return self.result()

    def _transition(self, state: ImportState) -> None:
        logger.debug("%s import: %s -> %s", self.label, self.state.value, state.value)
        self.state = state

    def _process(self, row_number: int, record: Dict[str, str]) -> None:
        try:
            outcome = self.process_row(record)
        except RowError as e:
            self.db.rollback()
            self._fail(row_number, e.field, e.rule, e.message)
            return
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Storage error on %s import row %d", self.label, row_number)
            self._fail(row_number, None, "storage_error", "Row could not be stored")
            return
        self.outcomes[row_number] = outcome
        if outcome is RowOutcome.DUPLICATE:
            self.duplicates += 1
        else:
            self.success += 1

    def _fail(self, row_number: int, field: Optional[str], rule: str, message: str) -> None:
        self.failed += 1
        self.outcomes[row_number] = RowOutcome.FAILED
        self.errors.append(ImportErrorOut(row=row_number, field=field, rule=rule, message=message))

    def result(self) -> ImportResultOut:
        cap = get_settings().IMPORT_MAX_ERRORS
        return ImportResultOut(
            success=self.success,
            failed=self.failed,
            duplicates=self.duplicates,
            total=self.success + self.failed + self.duplicates,
            errors=self.errors[:cap],
            has_more_errors=len(self.errors) > cap,
        )

    def process_row(self, record: Dict[str, str]) -> RowOutcome:
        raise NotImplementedError


class PublicationImportJob(ImportJob):
    aliases = PUB_ALIASES
    label = "publications"

    def __init__(self, db: Session, user: User, department_id: Optional[int] = None):
        super().__init__(db)
        self.user = user
        self.department_id = department_id

    def validate(self, record: Dict[str, str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        data['title'] = _require(record, 'title')
        data['authors'] = _require(record, 'authors')
        journal_name = record.get('journal', '')
        issn = record.get('issn', '').upper()
        if not journal_name and not issn:
            raise RowError('journal', "required", "journal is required")
        if self.department_id is None:
            _require(record, 'department')
        data['publish_year'] = _parse_year(_require(record, 'publish_year'), 'publish_year', date.today().year)

        for field in ('volume', 'issue', 'pages', 'doi', 'pmid', 'wos_number', 'document_type'):
            data[field] = record.get(field) or None
        for field, limit in PUB_MAX_LENGTHS.items():
            value = data.get(field)
            if value and len(value) > limit:
                raise RowError(field, "max_length", f"{field} must be at most {limit} characters")
        if data['doi'] and not DOI_RE.match(data['doi']):
            raise RowError('doi', "format", "doi must look like 10.NNNN/suffix")
        if data['pmid'] and not PMID_RE.match(data['pmid']):
            raise RowError('pmid', "format", "pmid must contain digits only")
        if data['wos_number'] and not WOS_RE.match(data['wos_number']):
            raise RowError('wos_number', "format", "wos_number must be a 15-character accession number, optionally prefixed with WOS:")
        if issn and not ISSN_RE.match(issn):
            raise RowError('issn', "format", "issn must look like NNNN-NNNN")

        journal = resolve_journal(self.db, journal_name or None, issn or None, data['publish_year'])
        if journal is None:
            ref = ", ".join(v for v in (journal_name, issn) if v)
            raise RowError('journal', "unresolved_reference", f"No journal matches '{ref}'")
        data['journal_id'] = journal.id

        if self.department_id is not None:
            data['department_id'] = self.department_id
        else:
            dept = resolve_department(self.db, record['department'])
            if dept is None:
                raise RowError('department', "unresolved_reference", f"No department matches '{record['department']}'")
            data['department_id'] = dept.id
        return data

    def is_duplicate(self, data: Dict[str, Any]) -> bool:
        return find_duplicate_publication(
            self.db, data['title'], data['journal_id'], data['publish_year'],
            doi=data['doi'], pmid=data['pmid'], wos_number=data['wos_number'],
        ) is not None

    def process_row(self, record: Dict[str, str]) -> RowOutcome:
        data = self.validate(record)
        if self.is_duplicate(data):
            return RowOutcome.DUPLICATE
        self.db.add(Publication(user_id=self.user.id, **data))
        self.db.commit()
        return RowOutcome.INSERTED


class JournalImportJob(ImportJob):
    aliases = JOURNAL_ALIASES
    label = "journals"

    def validate(self, record: Dict[str, str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        data['name'] = _require(record, 'name')
        if len(data['name']) > 200:
            raise RowError('name', "max_length", "name must be at most 200 characters")

        raw_if = _require(record, 'impact_factor')
        try:
            impact = Decimal(raw_if)
        except InvalidOperation:
            raise RowError('impact_factor', "format", f"impact_factor must be a number, got '{raw_if}'")
        if not impact.is_finite() or not Decimal(0) <= impact <= Decimal(50):
            raise RowError('impact_factor', "range", "impact_factor must be between 0 and 50")
        data['impact_factor'] = impact

        quartile = _require(record, 'quartile').upper()
        if quartile not in {q.value for q in Quartile}:
            raise RowError('quartile', "allowed_values", "quartile must be one of Q1, Q2, Q3, Q4")
        data['quartile'] = quartile

        data['category'] = _require(record, 'category')
        if len(data['category']) > 100:
            raise RowError('category', "max_length", "category must be at most 100 characters")
        data['year'] = _parse_year(_require(record, 'year'), 'year', date.today().year + 1)

        publisher = record.get('publisher') or None
        if publisher and len(publisher) > 100:
            raise RowError('publisher', "max_length", "publisher must be at most 100 characters")
        data['publisher'] = publisher

        issn = (record.get('issn') or '').upper() or None
        if issn and not ISSN_RE.match(issn):
            raise RowError('issn', "format", "issn must look like NNNN-NNNN")
        data['issn'] = issn
        return data

    def is_duplicate(self, data: Dict[str, Any]) -> bool:
        same_name = select(Journal.id).where(Journal.name == data['name'], Journal.year == data['year']).limit(1)
        if self.db.execute(same_name).first() is not None:
            return True
        if data['issn']:
            same_issn = select(Journal.id).where(Journal.issn == data['issn'], Journal.year == data['year']).limit(1)
            return self.db.execute(same_issn).first() is not None
        return False

    def process_row(self, record: Dict[str, str]) -> RowOutcome:
        data = self.validate(record)
        if self.is_duplicate(data):
            return RowOutcome.DUPLICATE
        self.db.add(Journal(**data))
        self.db.commit()
        return RowOutcome.INSERTED
