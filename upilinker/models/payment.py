"""Payment request domain model and the submission forms that create it."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Domain attribute -> stored document field. The stored names are shared with
# documents written by earlier clients of the same collections.
DOCUMENT_FIELDS: Dict[str, str] = {
    "owner_id": "userId",
    "payee_name": "name",
    "upi_id": "upiId",
    "amount": "amount",
    "note": "notes",
    "status": "status",
    "created_at": "timestamp",
    "expires_at": "expiry",
    "upi_link": "upiLink",
}

CREATED_AT_FIELD = DOCUMENT_FIELDS["created_at"]


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class PaymentRequest(BaseModel):
    """A stored request for money, addressed to a single UPI ID."""

    id: str
    owner_id: Optional[str] = None
    payee_name: str
    upi_id: str
    amount: Optional[float] = None
    note: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    upi_link: str

    @field_validator("created_at", "expires_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value)

    @property
    def is_public(self) -> bool:
        return self.owner_id is None

    @property
    def is_flexible(self) -> bool:
        return not self.amount or self.amount <= 0

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "PaymentRequest":
        values = {attr: data.get(field) for attr, field in DOCUMENT_FIELDS.items()}
        if values["status"] is None:
            values["status"] = PaymentStatus.PENDING
        return cls(id=doc_id, **values)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the store. The creation timestamp is store-assigned and left out."""
        data = self.model_dump(exclude={"id", "created_at"})
        data["status"] = self.status.value
        return {DOCUMENT_FIELDS[attr]: value for attr, value in data.items()}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _check_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Name is required.")
    return value


def _check_upi_id(value: str) -> str:
    value = value.strip()
    if len(value) < 5:
        raise ValueError("Please enter a valid UPI ID.")
    if "@" not in value:
        raise ValueError("Invalid UPI ID format.")
    return value


class LinkForm(BaseModel):
    """Fields needed to build a UPI link without storing anything (widget)."""

    name: str = Field(min_length=1, max_length=120)
    upi_id: str = Field(max_length=255)
    amount: Optional[float] = Field(default=None, allow_inf_nan=False)
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _check_name(value)

    @field_validator("upi_id")
    @classmethod
    def _upi_id(cls, value: str) -> str:
        return _check_upi_id(value)

    @field_validator("amount", "note", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("amount")
    @classmethod
    def _amount(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("Amount must be greater than 0.")
        return value


class PaymentRequestCreate(BaseModel):
    """Form payload for a stored payment request."""

    name: str = Field(min_length=1, max_length=120)
    upi_id: str = Field(max_length=255)
    allow_flexible_amount: bool = False
    amount: Optional[float] = Field(default=None, allow_inf_nan=False, validate_default=True)
    note: Optional[str] = Field(default=None, max_length=500)
    expires_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _check_name(value)

    @field_validator("upi_id")
    @classmethod
    def _upi_id(cls, value: str) -> str:
        return _check_upi_id(value)

    @field_validator("amount", "note", "expires_at", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("amount")
    @classmethod
    def _amount(cls, value: Optional[float], info: ValidationInfo) -> Optional[float]:
        if value is None:
            if info.data.get("allow_flexible_amount"):
                return None
            raise ValueError("Amount must be greater than 0.")
        if value <= 0:
            raise ValueError("Amount must be greater than 0.")
        return value

    @field_validator("expires_at")
    @classmethod
    def _expires_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value)
