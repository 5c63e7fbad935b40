"""
Core schemas - shared Pydantic models for API requests and responses.
"""

from ninja import Schema
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Stable machine-readable error code")

    model_config = {
        "json_schema_extra": {
            "example": {"error": "Invalid or expired challenge", "code": "invalid_challenge"}
        }
    }


class CamelSchema(Schema):
    """
    Schema serialized with camelCase keys on the wire.

    Accepts both camelCase and snake_case on input; endpoints returning these
    should be declared with ``by_alias=True``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
