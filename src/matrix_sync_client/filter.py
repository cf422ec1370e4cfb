"""Server-side sync filter definitions.

A filter is uploaded once per user (POST /user/{userId}/filter) and the
returned id is passed to every /sync call afterwards.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_FILTER_LIMIT = 20


class FilterPart(BaseModel):
    """Restricts one section of a sync response (timeline, state, ...)."""

    model_config = ConfigDict(extra="allow")

    limit: int | None = None
    rooms: list[str] | None = None
    not_rooms: list[str] | None = None
    senders: list[str] | None = None
    not_senders: list[str] | None = None
    types: list[str] | None = None
    not_types: list[str] | None = None
    contains_url: bool | None = None
    lazy_load_members: bool | None = None
    include_redundant_members: bool | None = None


class RoomFilter(BaseModel):
    model_config = ConfigDict(extra="allow")

    account_data: FilterPart | None = None
    ephemeral: FilterPart | None = None
    include_leave: bool | None = None
    not_rooms: list[str] | None = None
    rooms: list[str] | None = None
    state: FilterPart | None = None
    timeline: FilterPart | None = None


class Filter(BaseModel):
    """Top-level filter definition.

    Raises:
        pydantic.ValidationError: If event_format is not "client" or "federation"
    """

    model_config = ConfigDict(extra="allow")

    account_data: FilterPart | None = None
    event_fields: list[str] | None = None
    event_format: Literal["client", "federation"] | None = None
    presence: FilterPart | None = None
    room: RoomFilter | None = None

    @field_validator("event_fields")
    @classmethod
    def _no_empty_fields(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(not f for f in value):
            raise ValueError("event_fields entries must be non-empty")
        return value


def default_filter_part() -> FilterPart:
    return FilterPart(limit=DEFAULT_FILTER_LIMIT)


def default_filter() -> Filter:
    """A filter that caps every section at DEFAULT_FILTER_LIMIT events."""
    return Filter(
        account_data=default_filter_part(),
        event_format="client",
        presence=default_filter_part(),
        room=RoomFilter(
            account_data=default_filter_part(),
            ephemeral=default_filter_part(),
            include_leave=False,
            state=default_filter_part(),
            timeline=default_filter_part(),
        ),
    )
