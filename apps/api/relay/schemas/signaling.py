"""Data contracts for matchmaking preferences and the polling transport."""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PartnerPreference(str, enum.Enum):
    SAME = "same"
    ANY = "any"


class Preferences(BaseModel):
    """Matching preferences a client sends with its ``waiting`` request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    gender: str = Field(default="", description="Self-reported gender category")
    partner_preference: PartnerPreference = Field(
        default=PartnerPreference.ANY,
        alias="partnerPreference",
        description="Whether the partner must share the client's gender",
    )
    interest: str = Field(default="", description="Optional interest tag; empty matches any")

    @field_validator("gender", "interest", mode="before")
    @classmethod
    def _blank_if_missing(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("partner_preference", mode="before")
    @classmethod
    def _any_unless_same(cls, value: object) -> object:
        """Anything other than ``same`` means the client accepts any gender."""

        if isinstance(value, PartnerPreference):
            return value
        if isinstance(value, str) and value.strip().lower() == PartnerPreference.SAME.value:
            return PartnerPreference.SAME
        return PartnerPreference.ANY

    @property
    def wanted_gender(self) -> str | None:
        """Gender this client wants in a partner, ``None`` for no restriction."""

        if self.partner_preference is PartnerPreference.SAME:
            return self.gender
        return None


class PollRequest(BaseModel):
    """Body of a poll round-trip: an optional client id plus an optional operation."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    # Untyped; operation parsing rejects bad values.
    client_id: Any = Field(default=None, alias="clientId")
    type: Any = Field(default=None, description="Operation or relay message type")

    def operation_fields(self) -> dict[str, Any]:
        """Return the inbound operation as a plain dict, without the client id."""

        return self.model_dump(exclude={"client_id"})


class PollResponse(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)


class CleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str | None = Field(default=None, alias="clientId")


class StatsResponse(BaseModel):
    connections: int = Field(..., ge=0)
    waiting: int = Field(..., ge=0)
    pairs: int = Field(..., ge=0)
