"""Seed the jurisdiction reference table from the bundled YAML data.

Idempotent: rows are upserted by code, so re-running refreshes names and
parents without creating duplicates.
"""

import argparse
import asyncio
import logging
import re
from pathlib import Path
from uuid import uuid4

import yaml
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexvault.dependencies import build_services
from lexvault.models import Jurisdiction, JurisdictionLevel, LegalSystem
from lexvault.services.jurisdictions import JurisdictionService

logger = logging.getLogger(__name__)

DEFAULT_SEED_PATH = Path(__file__).parent / "data" / "jurisdictions.yaml"


class FederalSeed(BaseModel):
    name: str
    code: str
    legal_system: LegalSystem
    geo_code: str | None = None
    population: int | None = None


class RegionSeed(BaseModel):
    """A province or territory and its municipalities."""

    name: str
    code: str
    level: JurisdictionLevel
    legal_system: LegalSystem
    population: int | None = None
    municipalities: list[str] = []


class SeedFile(BaseModel):
    federal: FederalSeed
    regions: list[RegionSeed]


class JurisdictionSeed(BaseModel):
    """One row to upsert, with its parent named by code."""

    code: str
    name: str
    level: JurisdictionLevel
    legal_system: LegalSystem
    parent_code: str | None = None
    geo_code: str | None = None
    population: int | None = None


def municipality_code(region_code: str, name: str) -> str:
    slug = re.sub(r"[\s'’]", "_", name.upper())
    return f"{region_code}-{slug}"


def load_seed(path: Path = DEFAULT_SEED_PATH) -> list[JurisdictionSeed]:
    """Flatten the YAML hierarchy into parent-first rows."""
    with open(path, encoding="utf-8") as f:
        data = SeedFile.model_validate(yaml.safe_load(f))

    federal = data.federal
    rows = [
        JurisdictionSeed(
            code=federal.code,
            name=federal.name,
            level=JurisdictionLevel.FEDERAL,
            legal_system=federal.legal_system,
            geo_code=federal.geo_code,
            population=federal.population,
        )
    ]
    for region in data.regions:
        rows.append(
            JurisdictionSeed(
                code=region.code,
                name=region.name,
                level=region.level,
                legal_system=region.legal_system,
                parent_code=federal.code,
                geo_code=f"{federal.code}-{region.code}",
                population=region.population,
            )
        )
        for city in region.municipalities:
            rows.append(
                JurisdictionSeed(
                    code=municipality_code(region.code, city),
                    name=city,
                    level=JurisdictionLevel.MUNICIPAL,
                    legal_system=region.legal_system,
                    parent_code=region.code,
                )
            )
    return rows


async def upsert_jurisdictions(
    session_factory: async_sessionmaker[AsyncSession], rows: list[JurisdictionSeed]
) -> int:
    """Insert or update rows by code. Rows must be ordered parents first."""
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(select(Jurisdiction))
            by_code = {j.code: j for j in result.scalars().all()}

            for row in rows:
                parent_id = None
                if row.parent_code is not None:
                    parent = by_code.get(row.parent_code)
                    if parent is None:
                        raise ValueError(f"Seed row {row.code} names unknown parent {row.parent_code}")
                    parent_id = parent.id

                jurisdiction = by_code.get(row.code)
                if jurisdiction is None:
                    jurisdiction = Jurisdiction(id=uuid4(), code=row.code)
                    session.add(jurisdiction)
                    by_code[row.code] = jurisdiction

                jurisdiction.name = row.name
                jurisdiction.level = row.level
                jurisdiction.legal_system = row.legal_system
                jurisdiction.parent_id = parent_id
                jurisdiction.geo_code = row.geo_code
                jurisdiction.population = row.population
                # Parents must exist before children reference them.
                await session.flush()

    return len(rows)


async def seed_jurisdictions(
    session_factory: async_sessionmaker[AsyncSession],
    jurisdictions: JurisdictionService,
    path: Path = DEFAULT_SEED_PATH,
) -> int:
    rows = load_seed(path)
    count = await upsert_jurisdictions(session_factory, rows)
    await jurisdictions.invalidate()
    logger.info(f"Seeded {count} jurisdictions from {path}")
    return count


async def run_seed(path: Path) -> None:
    services = build_services()
    try:
        await seed_jurisdictions(services.session_factory, services.jurisdictions, path)
    finally:
        await services.close()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Seed LexVault jurisdictions")
    parser.add_argument(
        "-f",
        "--file",
        type=Path,
        default=DEFAULT_SEED_PATH,
        help="Path to the jurisdiction YAML file",
    )
    args = parser.parse_args()
    asyncio.run(run_seed(args.file))


if __name__ == "__main__":
    main()
