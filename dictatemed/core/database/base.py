"""
Base database models and utilities.

This module provides the foundational database components used across
all entities in the database layer using SQLModel.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ConfigDict
from sqlmodel import SQLModel


class Base(SQLModel):
    """Base class for all SQLModel entities."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


def new_id() -> str:
    """Generate a primary key for a new row."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the column types."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def load_json(value: Optional[str], default: Any) -> Any:
    """Decode a JSON text column, falling back to ``default`` on bad data."""
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def dump_json(value: Any) -> str:
    """Encode a value for a JSON text column."""
    return json.dumps(value, default=str)
