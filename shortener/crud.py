from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from .models import UrlRecord, ClickRecord
from .domain import UrlMapping, ClickEvent
from typing import Optional, List

# Mapping CRUD
async def get_mapping(db: AsyncSession, shortcode: str) -> Optional[UrlRecord]:
    result = await db.execute(select(UrlRecord).where(UrlRecord.shortcode == shortcode))
    return result.scalar_one_or_none()

async def mapping_exists(db: AsyncSession, shortcode: str) -> bool:
    result = await db.execute(select(UrlRecord.shortcode).where(UrlRecord.shortcode == shortcode))
    return result.first() is not None

async def list_mappings(db: AsyncSession) -> List[UrlRecord]:
    result = await db.execute(select(UrlRecord).order_by(UrlRecord.created_at.desc()))
    return list(result.scalars().all())

async def create_mapping(db: AsyncSession, mapping: UrlMapping) -> UrlRecord:
    record = UrlRecord(**mapping.model_dump())
    db.add(record)
    # flush so a duplicate key raises here, inside the caller's transaction
    await db.flush()
    return record

async def upsert_mapping(db: AsyncSession, mapping: UrlMapping) -> UrlRecord:
    record = await db.merge(UrlRecord(**mapping.model_dump()))
    await db.flush()
    return record

async def increment_click_count(db: AsyncSession, shortcode: str) -> int:
    result = await db.execute(
        update(UrlRecord)
        .where(UrlRecord.shortcode == shortcode)
        .values(click_count=UrlRecord.click_count + 1)
    )
    return result.rowcount

# Click CRUD
async def add_click(db: AsyncSession, event: ClickEvent) -> ClickRecord:
    record = ClickRecord(**event.model_dump())
    db.add(record)
    await db.flush()
    return record

async def list_clicks(db: AsyncSession, shortcode: str) -> List[ClickRecord]:
    result = await db.execute(
        select(ClickRecord)
        .where(ClickRecord.shortcode == shortcode)
        .order_by(ClickRecord.timestamp.desc(), ClickRecord.id.desc())
    )
    return list(result.scalars().all())
