"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    func,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ProjectORM(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    account_id = Column(String(12), nullable=False)
    domain = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class EnvironmentORM(Base):
    __tablename__ = "environments"

    id = Column(String(36), primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    account_id = Column(String(12), nullable=False)
    region = Column(String(32), nullable=False)
    manager_role_arn = Column(String(2048), nullable=False, default="")
    execution_role_arn = Column(String(2048), nullable=False, default="")
    prod = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("project", "name", name="uq_environments_project_name"),
        Index("ix_environments_account_region", "account_id", "region"),
    )


class ApplicationORM(Base):
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("project", "name", name="uq_applications_project_name"),
    )


class ProjectLinkORM(Base):
    """An (account, region) pair that project-wide resources are extended to."""

    __tablename__ = "project_links"

    project = Column(String(255), primary_key=True)
    account_id = Column(String(12), primary_key=True)
    region = Column(String(32), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
