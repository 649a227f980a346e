"""Persistence layer for the Apoyo API.

Provides the store of record over SQLAlchemy async:
- Engine and session lifecycle (Database)
- ORM tables with the ledger's database constraints
- Repositories for contacts, companies and the SQL ledger store
- Versioned schema adapter for chip templates
"""

from apoyo.persistence.db import Database, create_engine
from apoyo.persistence.repositories import CompanyRepository, ContactRepository, SqlLedgerStore
from apoyo.persistence.schema import (
    ChipTemplateSource,
    JobChip,
    SchemaVersion,
    V1ChipTemplateSource,
    V2ChipTemplateSource,
    detect_schema_version,
    foreign_chip_tables,
    resolve_schema_version,
    select_chip_source,
)
from apoyo.persistence.tables import Base

__all__ = [
    "Base",
    "Database",
    "create_engine",
    # Repositories
    "CompanyRepository",
    "ContactRepository",
    "SqlLedgerStore",
    # Schema adapter
    "ChipTemplateSource",
    "JobChip",
    "SchemaVersion",
    "V1ChipTemplateSource",
    "V2ChipTemplateSource",
    "detect_schema_version",
    "foreign_chip_tables",
    "resolve_schema_version",
    "select_chip_source",
]
