"""
Shared Models

Base class for domain models parsed from backend payloads.
"""

from pydantic import BaseModel, ConfigDict


class DomainModel(BaseModel):
    """
    Base domain model for all domain entities.

    Provides:
    - Population by field name or backend alias
    - Immutable snapshots (copy with model_copy(update=...))
    - Decimals serialized as strings in JSON mode (pydantic default)
    """

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
    )
