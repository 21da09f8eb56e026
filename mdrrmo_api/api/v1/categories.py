"""Category API - equipment and supply categories."""

from fastapi import APIRouter, status
from sqlalchemy import select, func
import logging

from mdrrmo_api.api.deps import DbSession, CurrentUser, AdminUser, Cache
from mdrrmo_api.exceptions import ConflictError, NotFoundError
from mdrrmo_api.models.category import Category
from mdrrmo_api.models.inventory import InventoryItem
from mdrrmo_api.schemas.category import CategoryCreate, CategoryUpdate, CategoryResponse
from mdrrmo_api.schemas.common import envelope
from mdrrmo_api.services.cache_service import INVENTORY_PATTERNS
from mdrrmo_api.utils.timeutils import utcnow

logger = logging.getLogger(__name__)
router = APIRouter()


def category_to_response(category: Category) -> dict:
    return CategoryResponse.model_validate(category).model_dump(mode="json")


async def _get_category(db, category_id: int) -> Category:
    result = await db.execute(
        select(Category).where(Category.id == category_id, Category.deleted_at.is_(None))
    )
    category = result.scalar_one_or_none()
    if not category:
        raise NotFoundError("Category", category_id)
    return category


async def _ensure_name_free(db, name: str, exclude_id: int | None = None) -> None:
    query = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError(f"Category '{name}' already exists")


@router.get("")
async def list_categories(db: DbSession, current_user: CurrentUser):
    result = await db.execute(
        select(Category).where(Category.deleted_at.is_(None)).order_by(Category.name)
    )
    return envelope([category_to_response(c) for c in result.scalars().all()])


@router.get("/{category_id}")
async def get_category(category_id: int, db: DbSession, current_user: CurrentUser):
    return envelope(category_to_response(await _get_category(db, category_id)))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_category(data: CategoryCreate, db: DbSession, admin: AdminUser):
    await _ensure_name_free(db, data.name)
    category = Category(**data.model_dump())
    db.add(category)
    await db.commit()
    await db.refresh(category)
    logger.info(f"Created category {category.name}")
    return envelope(category_to_response(category), message="Category created")


@router.patch("/{category_id}")
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    db: DbSession,
    admin: AdminUser,
    cache: Cache,
):
    category = await _get_category(db, category_id)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("name"):
        await _ensure_name_free(db, changes["name"], exclude_id=category_id)
    for field, value in changes.items():
        setattr(category, field, value)
    await db.commit()
    await db.refresh(category)
    # Item listings embed the category, and its type drives serialization
    await cache.invalidate(*INVENTORY_PATTERNS)
    return envelope(category_to_response(category), message="Category updated")


@router.delete("/{category_id}")
async def delete_category(category_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    category = await _get_category(db, category_id)
    item_count = (await db.execute(
        select(func.count(InventoryItem.id)).where(
            InventoryItem.category_id == category_id,
            InventoryItem.deleted_at.is_(None),
        )
    )).scalar()
    if item_count:
        raise ConflictError(f"Category '{category.name}' still has {item_count} items")
    category.deleted_at = utcnow()
    await db.commit()
    await cache.invalidate(*INVENTORY_PATTERNS)
    return envelope(message="Category deleted")


@router.post("/{category_id}/restore")
async def restore_category(category_id: int, db: DbSession, admin: AdminUser, cache: Cache):
    category = await db.get(Category, category_id)
    if not category:
        raise NotFoundError("Category", category_id)
    if category.deleted_at is None:
        raise ConflictError(f"Category '{category.name}' is not deleted", ids=[category_id])
    category.deleted_at = None
    await db.commit()
    await db.refresh(category)
    logger.info(f"Restored category {category.name}")
    await cache.invalidate(*INVENTORY_PATTERNS)
    return envelope(category_to_response(category), message="Category restored")
