"""
schemas/base.py
---------------
Shared pydantic base: snake_case attributes in Python, camelCase on the wire
and in stored records.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict:
        """JSON-safe dict in the stored (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
