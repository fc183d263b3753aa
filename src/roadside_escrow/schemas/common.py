"""Shared API schema pieces: the response envelope and camelCase base model."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base for request and response bodies. JSON keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Envelope(BaseModel, Generic[T]):
    """Every JSON response is wrapped as {success, data} or {success, error}."""

    success: bool = True
    data: T


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorBody


def ok(data: T) -> Envelope[T]:
    return Envelope[T](data=data)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall status: ok or degraded")
    version: str = Field(..., description="Application version")
    database: str = Field(..., description="Database connectivity status")
    redis: str = Field(..., description="Redis connectivity status")
