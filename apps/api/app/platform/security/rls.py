from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.sql import Select


def apply_tenant_filter(query: Select[Any], dealership_id: uuid.UUID) -> Select[Any]:
    """Restrict every selected entity exposing a dealership_id column to one dealership."""

    scoped = False
    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None or not hasattr(model, "dealership_id"):
            continue
        query = query.where(getattr(model, "dealership_id") == dealership_id)
        scoped = True

    if not scoped:
        raise ValueError("query has no tenant-scoped entity")
    return query
