"""Base schema configuration for API models.

Usage:
    - APIRequest: For incoming API request bodies
    - APIResponse: For outgoing API response bodies
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _BaseSchema(BaseModel):
    """Private base schema with common configuration.

    Do not use directly - inherit from one of the public subclasses.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,  # Accept both snake_case and camelCase
        use_enum_values=True,
        validate_default=True,
        serialize_by_alias=True,
    )


class APIRequest(_BaseSchema):
    """Base class for incoming API request schemas; unknown fields are ignored."""

    model_config = ConfigDict(
        extra="ignore",
    )


class APIResponse(_BaseSchema):
    """Base class for outgoing API response schemas; only declared fields."""

    model_config = ConfigDict(
        extra="forbid",
    )
