"""Schemas for the identify endpoint."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.identity.types import Fingerprint, IdentityView


class IdentifyRequest(BaseModel):
    """Request model for resolving a contact identity."""

    email: str | None = Field(default=None, description="Email address")
    phone_number: str | None = Field(
        default=None,
        alias="phoneNumber",
        description="Phone number; numeric values are accepted and stored as text",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("phone_number", mode="before")
    @classmethod
    def coerce_phone_number(cls, v: object) -> object:
        """Accept phone numbers sent as JSON numbers."""
        if isinstance(v, bool):
            raise ValueError("phoneNumber must be a string or a number")
        if isinstance(v, int):
            return str(v)
        return v

    def to_fingerprint(self) -> Fingerprint:
        return Fingerprint(email=self.email, phone_number=self.phone_number)


class ContactSummary(BaseModel):
    """Consolidated identity in the wire format clients already consume."""

    primary_contact_id: int = Field(serialization_alias="primaryContatctId")
    emails: list[str]
    phone_numbers: list[str] = Field(serialization_alias="phoneNumbers")
    secondary_contact_ids: list[int] = Field(serialization_alias="secondaryContactIds")

    @classmethod
    def from_view(cls, view: IdentityView) -> "ContactSummary":
        return cls(
            primary_contact_id=view.primary_id,
            emails=view.emails,
            phone_numbers=view.phone_numbers,
            secondary_contact_ids=view.secondary_ids,
        )


class IdentifyResponse(BaseModel):
    """Response model for the identify endpoint."""

    contact: ContactSummary
