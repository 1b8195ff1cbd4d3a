from __future__ import annotations
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, ForeignKey, DateTime, Text, Boolean, Numeric
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func
from .db import Base
from enum import Enum as PyEnum


class Role(str, PyEnum):
    ADMIN = "admin"
    DEPARTMENT_ADMIN = "department_admin"
    USER = "user"


class Quartile(str, PyEnum):
    Q1 = "Q1"
    Q2 = "Q2"
    Q3 = "Q3"
    Q4 = "Q4"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), index=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    users: Mapped[List[User]] = relationship("User", back_populates="department", passive_deletes=True)
    publications: Mapped[List[Publication]] = relationship("Publication", back_populates="department", passive_deletes="all")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    # bcrypt hash; never leaves the service (schemas.UserOut has no such field)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(32), default=Role.USER.value, index=True)  # admin|department_admin|user
    department_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    department: Mapped[Optional[Department]] = relationship("Department", back_populates="users")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Journal(Base):
    __tablename__ = "journals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    issn: Mapped[Optional[str]] = mapped_column(String(20), index=True, nullable=True)
    impact_factor: Mapped[Decimal] = mapped_column(Numeric(8, 4), index=True)
    quartile: Mapped[str] = mapped_column(String(2), index=True)  # Q1..Q4
    category: Mapped[str] = mapped_column(String(100), index=True)
    publisher: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # JCR data year; name+year is unique in practice but not enforced
    year: Mapped[int] = mapped_column(Integer, index=True)

    publications: Mapped[List[Publication]] = relationship("Publication", back_populates="journal", passive_deletes="all")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Publication(Base):
    __tablename__ = "publications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), index=True)
    authors: Mapped[str] = mapped_column(Text)
    publish_year: Mapped[int] = mapped_column(Integer, index=True)
    volume: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    issue: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pages: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    doi: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)
    pmid: Mapped[Optional[str]] = mapped_column(String(20), index=True, nullable=True)
    wos_number: Mapped[Optional[str]] = mapped_column(String(50), index=True, nullable=True)
    document_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    journal_id: Mapped[int] = mapped_column(ForeignKey("journals.id", ondelete="RESTRICT"), index=True)
    journal: Mapped[Journal] = relationship("Journal", back_populates="publications")
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id", ondelete="RESTRICT"), index=True)
    department: Mapped[Department] = relationship("Department", back_populates="publications")
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True)
    user: Mapped[User] = relationship("User")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
