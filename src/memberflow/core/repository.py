"""Tenant-scoped data access.

The tenant id is passed explicitly to the repository and applied to every
query it builds; nothing is read from ambient state.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memberflow.core.exceptions import NotFoundError

ModelT = TypeVar("ModelT")


class TenantScopedRepository:
    """Builds and runs queries restricted to one tenant."""

    def __init__(self, session: AsyncSession, tenant_id: UUID) -> None:
        self.session = session
        self.tenant_id = tenant_id

    def select(self, model: type[ModelT]) -> Select[tuple[ModelT]]:
        return select(model).where(model.tenant_id == self.tenant_id)  # type: ignore[attr-defined]

    async def find(
        self,
        model: type[ModelT],
        entity_id: UUID,
        *,
        for_update: bool = False,
    ) -> ModelT | None:
        query = self.select(model).where(model.id == entity_id)  # type: ignore[attr-defined]
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get(
        self,
        model: type[ModelT],
        entity_id: UUID,
        *,
        error: type[NotFoundError] = NotFoundError,
        for_update: bool = False,
    ) -> ModelT:
        """Load by id or raise ``error``.

        Rows belonging to another tenant are reported as not found.
        """
        entity = await self.find(model, entity_id, for_update=for_update)
        if entity is None:
            raise error(resource_type=model.__name__, resource_id=str(entity_id))
        return entity

    async def first(self, query: Select[tuple[ModelT]]) -> ModelT | None:
        result = await self.session.execute(query.limit(1))
        return result.scalars().first()

    async def all(self, query: Select[tuple[ModelT]]) -> list[ModelT]:
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, model: type[Any], *conditions: Any) -> int:
        query = (
            select(func.count())
            .select_from(model)
            .where(model.tenant_id == self.tenant_id, *conditions)
        )
        result = await self.session.execute(query)
        return int(result.scalar_one())

    def add(self, entity: object) -> None:
        self.session.add(entity)

    def add_all(self, entities: Sequence[object]) -> None:
        self.session.add_all(entities)

    async def flush(self) -> None:
        await self.session.flush()
