from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, TypeAdapter, field_validator


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ContactBase(BaseModel):
    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @field_validator("createdAt", "updatedAt", "deletedAt")
    @classmethod
    def assume_utc(cls, value):
        # sqlite's CURRENT_TIMESTAMP default is naive UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PrimaryContact(ContactBase):
    linkPrecedence: Literal["primary"] = "primary"
    linkedId: None = None


class SecondaryContact(ContactBase):
    linkPrecedence: Literal["secondary"] = "secondary"
    linkedId: int


# a row is either a primary (no parent) or a secondary pointing at its primary
Contact = Annotated[Union[PrimaryContact, SecondaryContact], Field(discriminator="linkPrecedence")]

contact_adapter = TypeAdapter(Contact)


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_absent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("email")
    @classmethod
    def check_email_syntax(cls, value):
        """Syntax check only; the address is matched exactly as sent."""
        if value is None:
            return value
        try:
            validate_email(value, check_deliverability=False, allow_display_name=False)
        except EmailNotValidError as exc:
            raise ValueError(f"Invalid email format: {exc}") from exc
        return value

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def coerce_phone_number(cls, value):
        """Numeric phone numbers arrive from JSON clients; store them as strings."""
        if isinstance(value, bool):
            raise ValueError("phoneNumber must be a string or a number")
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ContactResponse(BaseModel):
    primaryContatctId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
