from __future__ import annotations

import uuid
from typing import Any, Generic, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.platform.security.rls import apply_tenant_filter


ModelT = TypeVar("ModelT")


class TenantRepository(Generic[ModelT]):
    """Reads for one dealership-scoped model. Rows of other dealerships are indistinguishable from missing ones."""

    model: type[ModelT]
    not_found_detail = "not found"

    def scoped(self, dealership_id: uuid.UUID) -> Select[Any]:
        return apply_tenant_filter(select(self.model), dealership_id)

    def find(self, session: Session, dealership_id: uuid.UUID, entity_id: uuid.UUID) -> ModelT | None:
        return session.scalar(self.scoped(dealership_id).where(self.model.id == entity_id))  # type: ignore[attr-defined]

    def get(self, session: Session, dealership_id: uuid.UUID, entity_id: uuid.UUID) -> ModelT:
        entity = self.find(session, dealership_id, entity_id)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self.not_found_detail)
        return entity
