from __future__ import annotations

from typing import List, Optional, Protocol

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.blocking import run_blocking
from gatehouse.service.errors import ConflictError, NotFoundError
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import Category

logger = get_logger(__name__)

CATEGORY_EXISTS = "Category already exists"
CATEGORY_NOT_FOUND = "Category not found"


class CategoryStore(Protocol):
    def create_category(self, name: str) -> Category: ...

    def get_category(self, category_id: str) -> Optional[Category]: ...

    def list_categories(self) -> List[Category]: ...

    def rename_category(self, category_id: str, name: str) -> Optional[Category]: ...

    def delete_category(self, category_id: str) -> bool: ...


class CatalogService:
    """Category CRUD; role checks happen in the routes."""

    def __init__(self, store: CategoryStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def _store(self, fn, *args, op: str):
        return await run_blocking(fn, *args, timeout=self.settings.store_timeout_seconds, op=op)

    async def create(self, name: str) -> Category:
        try:
            category = await self._store(self.store.create_category, name, op="create_category")
        except ConstraintViolation:
            raise ConflictError(CATEGORY_EXISTS)
        logger.info("category_created", category_id=category.id)
        return category

    async def get(self, category_id: str) -> Category:
        category = await self._store(self.store.get_category, category_id, op="get_category")
        if not category:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        return category

    async def list(self) -> List[Category]:
        return await self._store(self.store.list_categories, op="list_categories")

    async def rename(self, category_id: str, name: str) -> Category:
        try:
            category = await self._store(
                self.store.rename_category, category_id, name, op="rename_category"
            )
        except ConstraintViolation:
            raise ConflictError(CATEGORY_EXISTS)
        if not category:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        logger.info("category_renamed", category_id=category.id)
        return category

    async def delete(self, category_id: str) -> None:
        removed = await self._store(self.store.delete_category, category_id, op="delete_category")
        if not removed:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        logger.info("category_deleted", category_id=category_id)
