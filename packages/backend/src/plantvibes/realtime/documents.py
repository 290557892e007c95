"""Full-document lookups for partial update events.

Learn: An update NOTIFY only carries the id and the columns that changed
(pg_notify payloads are capped at 8000 bytes, so shipping whole rows for
every update is not an option). When PLANTVIBES_ENRICH_UPDATE_EVENTS is on,
the broadcaster asks this loader for the current row and sends that instead.
A miss returns None and the broadcaster falls back to the partial payload.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plantvibes.db.models import ENTITY_MODELS, PRIVATE_COLUMNS


def serialize_row(obj) -> dict[str, Any]:
    """Column values of a mapped object, minus private columns."""
    mapper = inspect(obj).mapper
    return {
        attr.key: getattr(obj, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in PRIVATE_COLUMNS
    }


class SqlDocumentLoader:
    """Load the current row for (entity_type, document_id)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def __call__(self, entity_type: str, document_id: str) -> Optional[dict[str, Any]]:
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            return None
        try:
            key = uuid.UUID(str(document_id))
        except ValueError:
            return None

        async with self.session_factory() as session:
            obj = await session.get(model, key)
            if obj is None:
                return None
            return serialize_row(obj)
