from __future__ import annotations
from typing import List, Optional
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Quartile, Role

MIN_YEAR = 1900

# Identifier formats shared by the API payloads and the spreadsheet importer
DOI_PATTERN = r"^10\.\d{4,9}/\S+$"
PMID_PATTERN = r"^\d+$"
# Web of Science accession number, with or without the "WOS:" prefix
WOS_PATTERN = r"^(?:WOS:|wos:)?[A-Za-z0-9]{15}$"


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case accepted on input."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class PageMeta(ApiModel):
    page: int
    per_page: int
    total: int
    total_pages: int


def page_meta(page: int, per_page: int, total: int) -> PageMeta:
    return PageMeta(page=page, per_page=per_page, total=total, total_pages=(total + per_page - 1) // per_page)


def _journal_year_range(v: int) -> int:
    latest = date.today().year + 1
    if not MIN_YEAR <= v <= latest:
        raise ValueError(f"year must be between {MIN_YEAR} and {latest}")
    return v


# Departments
class DepartmentBrief(ApiModel):
    id: int
    name: str
    code: str


class DepartmentOut(DepartmentBrief):
    description: Optional[str] = None


class DepartmentCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    code: str = Field(min_length=1, max_length=20)
    description: Optional[str] = None


class DepartmentUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    description: Optional[str] = None


# Users
class UserOut(ApiModel):
    id: int
    username: str
    email: str
    role: Role
    department_id: Optional[int] = None
    department: Optional[DepartmentBrief] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserCreate(ApiModel):
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9]+$")
    email: str = Field(max_length=100, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=6, max_length=255)
    role: Role = Role.USER
    department_id: Optional[int] = None


class UserUpdate(ApiModel):
    email: Optional[str] = Field(default=None, max_length=100, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Optional[Role] = None
    department_id: Optional[int] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=255)


class UserPage(ApiModel):
    meta: PageMeta
    items: List[UserOut]


# Auth
class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(ApiModel):
    token: str
    expires_at: datetime
    user: UserOut


class ValidateResponse(ApiModel):
    valid: bool
    user: UserOut
    expires_at: datetime


class RefreshResponse(ApiModel):
    token: str
    expires_at: datetime


class PasswordChange(ApiModel):
    current_password: str
    new_password: str = Field(min_length=6, max_length=255)


# Journals
class JournalBrief(ApiModel):
    id: int
    name: str
    impact_factor: float
    quartile: Quartile


class JournalOut(JournalBrief):
    issn: Optional[str] = None
    category: str
    publisher: Optional[str] = None
    year: int


class JournalCreate(ApiModel):
    name: str = Field(min_length=1, max_length=200)
    issn: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{3}[\dXx]$")
    impact_factor: float = Field(ge=0, le=50)
    quartile: Quartile
    category: str = Field(min_length=1, max_length=100)
    publisher: Optional[str] = Field(default=None, max_length=100)
    year: int

    @field_validator("year")
    @classmethod
    def check_year(cls, v: int) -> int:
        return _journal_year_range(v)


class JournalUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    issn: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{3}[\dXx]$")
    impact_factor: Optional[float] = Field(default=None, ge=0, le=50)
    quartile: Optional[Quartile] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    publisher: Optional[str] = Field(default=None, max_length=100)
    year: Optional[int] = None

    @field_validator("year")
    @classmethod
    def check_year(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return _journal_year_range(v)


class JournalPage(ApiModel):
    meta: PageMeta
    items: List[JournalOut]


# Publications
class PublicationOut(ApiModel):
    id: int
    title: str
    authors: str
    publish_year: int
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    pmid: Optional[str] = None
    wos_number: Optional[str] = None
    document_type: Optional[str] = None
    journal_id: int
    department_id: int
    user_id: int
    journal: Optional[JournalBrief] = None
    department: Optional[DepartmentBrief] = None
    created_at: Optional[datetime] = None


def _publish_year_range(v: int) -> int:
    current = date.today().year
    if not MIN_YEAR <= v <= current:
        raise ValueError(f"publishYear must be between {MIN_YEAR} and {current}")
    return v


class PublicationCreate(ApiModel):
    title: str = Field(min_length=1, max_length=500)
    authors: str = Field(min_length=1, max_length=2000)
    journal_id: int
    department_id: int
    publish_year: int
    volume: Optional[str] = Field(default=None, max_length=20)
    issue: Optional[str] = Field(default=None, max_length=20)
    pages: Optional[str] = Field(default=None, max_length=50)
    doi: Optional[str] = Field(default=None, max_length=100, pattern=DOI_PATTERN)
    pmid: Optional[str] = Field(default=None, max_length=20, pattern=PMID_PATTERN)
    wos_number: Optional[str] = Field(default=None, max_length=50, pattern=WOS_PATTERN)
    document_type: Optional[str] = Field(default=None, max_length=50)

    @field_validator("publish_year")
    @classmethod
    def check_publish_year(cls, v: int) -> int:
        return _publish_year_range(v)


class PublicationUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    authors: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    journal_id: Optional[int] = None
    department_id: Optional[int] = None
    publish_year: Optional[int] = None
    volume: Optional[str] = Field(default=None, max_length=20)
    issue: Optional[str] = Field(default=None, max_length=20)
    pages: Optional[str] = Field(default=None, max_length=50)
    doi: Optional[str] = Field(default=None, max_length=100, pattern=DOI_PATTERN)
    pmid: Optional[str] = Field(default=None, max_length=20, pattern=PMID_PATTERN)
    wos_number: Optional[str] = Field(default=None, max_length=50, pattern=WOS_PATTERN)
    document_type: Optional[str] = Field(default=None, max_length=50)

    @field_validator("publish_year")
    @classmethod
    def check_publish_year(cls, v: Optional[int]) -> Optional[int]:
        return v if v is None else _publish_year_range(v)


class PublicationPage(ApiModel):
    meta: PageMeta
    items: List[PublicationOut]


# Import
class ImportErrorOut(ApiModel):
    row: int
    field: Optional[str] = None
    rule: str
    message: str


class ImportResultOut(ApiModel):
    success: int
    failed: int
    duplicates: int
    total: int
    errors: List[ImportErrorOut] = []
    has_more_errors: bool = False


# Statistics
class YearCount(ApiModel):
    year: int
    count: int
    average_impact_factor: float


class QuartileDistribution(BaseModel):
    Q1: int = 0
    Q2: int = 0
    Q3: int = 0
    Q4: int = 0


class DepartmentStatsOut(ApiModel):
    department: DepartmentBrief
    total_publications: int
    average_impact_factor: float
    high_impact_publications: int
    quartile_distribution: QuartileDistribution
    yearly_trend: List[YearCount]


class TopDepartment(ApiModel):
    department: DepartmentBrief
    publication_count: int
    average_impact_factor: float


class OverviewOut(ApiModel):
    total_publications: int
    total_departments: int
    total_journals: int
    average_impact_factor: float
    high_impact_publications: int
    quartile_distribution: QuartileDistribution
    top_departments: List[TopDepartment]
    yearly_trend: List[YearCount]


class ComparisonOut(ApiModel):
    items: List[TopDepartment]
    total_publications: int




# Journal reference data
class JournalCategories(ApiModel):
    categories: List[str]


class QuartileStat(ApiModel):
    quartile: str
    count: int
    average_impact_factor: float


class CategoryCount(ApiModel):
    category: str
    count: int


class JournalStatsOut(ApiModel):
    total_journals: int
    average_impact_factor: float
    quartile_stats: List[QuartileStat]
    yearly_stats: List[YearCount]
    category_stats: List[CategoryCount]
