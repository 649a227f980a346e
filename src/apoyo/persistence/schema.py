"""Versioned schema adapter for job chip templates.

Two generations of the chip link table exist in deployed databases:

- V1: ``job_offer_chips`` holds a copy of key and label per job, joined to
  ``chip_templates`` by ``chip_key`` for the id and category
- V2: ``job_chip_templates`` links jobs to ``chip_templates`` by id

The version is decided once at startup (pinned in settings or detected by
inspecting the database) and the matching source is used for every request.
Both sources return the same normalized :class:`JobChip` rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sqlalchemy import Connection, Table, inspect, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from apoyo.persistence.tables import ChipTemplateTable, JobChipTemplateTable, JobOfferChipTable

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "other"


class SchemaVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"


@dataclass(frozen=True)
class JobChip:
    """A chip attached to a job, independent of schema generation."""

    job_id: int
    chip_id: int | None
    chip_key: str
    chip_label: str
    category: str
    display_order: int


class ChipTemplateSource(Protocol):
    version: SchemaVersion

    async def chips_for_jobs(
        self, session: AsyncSession, job_ids: Sequence[int]
    ) -> dict[int, list[JobChip]]: ...


class V1ChipTemplateSource:
    """Legacy per-job chip copies."""

    version = SchemaVersion.V1

    async def chips_for_jobs(
        self, session: AsyncSession, job_ids: Sequence[int]
    ) -> dict[int, list[JobChip]]:
        stmt = (
            select(
                JobOfferChipTable.job_id,
                JobOfferChipTable.chip_key,
                JobOfferChipTable.chip_label,
                JobOfferChipTable.display_order,
                ChipTemplateTable.id.label("chip_id"),
                ChipTemplateTable.category,
            )
            .outerjoin(ChipTemplateTable, JobOfferChipTable.chip_key == ChipTemplateTable.chip_key)
            .where(JobOfferChipTable.job_id.in_(job_ids), JobOfferChipTable.is_active.is_(True))
            .order_by(JobOfferChipTable.job_id, JobOfferChipTable.display_order)
        )
        return _group(
            JobChip(
                job_id=row.job_id,
                chip_id=row.chip_id,
                chip_key=row.chip_key,
                chip_label=row.chip_label,
                category=row.category or DEFAULT_CATEGORY,
                display_order=row.display_order,
            )
            for row in (await session.execute(stmt)).all()
        )


class V2ChipTemplateSource:
    """Job links to shared chip templates."""

    version = SchemaVersion.V2

    async def chips_for_jobs(
        self, session: AsyncSession, job_ids: Sequence[int]
    ) -> dict[int, list[JobChip]]:
        stmt = (
            select(
                JobChipTemplateTable.job_id,
                JobChipTemplateTable.display_order,
                ChipTemplateTable.id.label("chip_id"),
                ChipTemplateTable.chip_key,
                ChipTemplateTable.chip_label,
                ChipTemplateTable.category,
            )
            .join(ChipTemplateTable, JobChipTemplateTable.chip_template_id == ChipTemplateTable.id)
            .where(JobChipTemplateTable.job_id.in_(job_ids))
            .order_by(JobChipTemplateTable.job_id, JobChipTemplateTable.display_order)
        )
        return _group(
            JobChip(
                job_id=row.job_id,
                chip_id=row.chip_id,
                chip_key=row.chip_key,
                chip_label=row.chip_label,
                category=row.category or DEFAULT_CATEGORY,
                display_order=row.display_order,
            )
            for row in (await session.execute(stmt)).all()
        )


def _group(chips: Iterable[JobChip]) -> dict[int, list[JobChip]]:
    grouped: dict[int, list[JobChip]] = {}
    for chip in chips:
        grouped.setdefault(chip.job_id, []).append(chip)
    return grouped


def _table_names(conn: Connection) -> list[str]:
    return inspect(conn).get_table_names()


async def detect_schema_version(engine: AsyncEngine) -> SchemaVersion:
    """Inspect the database once and pick the chip schema generation."""
    async with engine.connect() as conn:
        tables = set(await conn.run_sync(_table_names))

    if JobChipTemplateTable.__tablename__ in tables:
        return SchemaVersion.V2
    if JobOfferChipTable.__tablename__ in tables:
        return SchemaVersion.V1

    logger.warning("No chip link table found; assuming current schema")
    return SchemaVersion.V2


async def resolve_schema_version(setting: str, engine: AsyncEngine) -> SchemaVersion:
    """Use the pinned version from settings, or detect it when set to ``auto``."""
    if setting.lower() == "auto":
        version = await detect_schema_version(engine)
    else:
        version = SchemaVersion(setting.lower())
    logger.info(f"Chip template schema: {version.value}")
    return version


def foreign_chip_tables(version: SchemaVersion) -> list[Table]:
    """Link tables of the other generation, never created at startup.

    Creating them would make the next detection pick the wrong generation.
    """
    if version is SchemaVersion.V1:
        return [JobChipTemplateTable.__table__]
    return [JobOfferChipTable.__table__]


def select_chip_source(version: SchemaVersion) -> ChipTemplateSource:
    """Return the chip source for a schema generation."""
    if version is SchemaVersion.V1:
        return V1ChipTemplateSource()
    return V2ChipTemplateSource()
