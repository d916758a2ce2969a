# src/storytree/models/base_model.py
"""Shared Pydantic base model with tolerant enum handling."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class StoryTreeBaseModel(BaseModel):
    """Base model that reads ORM attributes and accepts enum names or values."""

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        validate_assignment=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_enums(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        for field_name, info in cls.model_fields.items():
            field_type = info.annotation
            if not (isinstance(field_type, type) and issubclass(field_type, Enum)):
                continue
            value = data.get(field_name)
            if isinstance(value, str):
                for member in field_type:
                    if value.lower() in {member.name.lower(), str(member.value).lower()}:
                        data[field_name] = member
                        break
        return data


__all__ = ["StoryTreeBaseModel"]
