"""
Base classes for domain entities.
"""
from typing import Any
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict


class DomainEntity(BaseModel):
    """Immutable base for every input snapshot."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode='json')


def now_utc() -> datetime:
    """Returns current UTC time."""
    return datetime.now(timezone.utc)
