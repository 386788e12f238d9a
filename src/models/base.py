"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class HealthSyncBase(BaseModel):
    """Base model with shared config for all HealthSync schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class WireModel(HealthSyncBase):
    """Base for models sent to the collection endpoint (camelCase on the wire)."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )


class ErrorDetail(BaseModel):
    detail: str
