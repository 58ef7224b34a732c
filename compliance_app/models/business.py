# compliance_app/models/business.py
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Optional
from pydantic import BaseModel, BeforeValidator, Field

from compliance_app.models.common import as_utc


class LegalEntity(str, Enum):
    SOLE_PROPRIETORSHIP = "sole-proprietorship"
    LLC = "llc"
    CORPORATION = "corporation"
    PARTNERSHIP = "partnership"
    NON_PROFIT = "non-profit"


def _parse_legal_entity(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower().replace("_", "-").replace(" ", "-")
    return value


LegalEntityField = Annotated[LegalEntity, BeforeValidator(_parse_legal_entity)]


class Address(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip: str = Field(min_length=1)
    country: str = Field(min_length=1)

    class Config:
        str_strip_whitespace = True


class Business(BaseModel):
    """A business location owned by exactly one user."""
    id: str
    owner_id: str
    name: str
    address: Address
    phone: str
    description: str = ""
    type: str
    legal_entity: LegalEntityField
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        from_attributes = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Business":
        return cls(
            id=data["id"],
            owner_id=data.get("owner_id", ""),
            name=data.get("name", ""),
            address=Address.model_construct(**(data.get("address") or {})),
            phone=data.get("phone", ""),
            description=data.get("description") or "",
            type=data.get("type", ""),
            legal_entity=_parse_legal_entity(data.get("legal_entity")),
            created_at=as_utc(data.get("created_at")),
            updated_at=as_utc(data.get("updated_at")),
        )

    def location(self) -> str:
        a = self.address
        return f"{a.street}, {a.city}, {a.state}, {a.zip}, {a.country}"


class BusinessCreate(BaseModel):
    """Basic business info. Any owner id in the payload is ignored."""
    name: str = Field(min_length=1)
    address: Address
    phone: str = Field(min_length=1)
    description: str = ""
    type: str = Field(min_length=1)
    legal_entity: LegalEntityField

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address.model_dump(),
            "phone": self.phone,
            "description": self.description,
            "type": self.type,
            "legal_entity": self.legal_entity.value,
        }


class BusinessUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[Address] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    legal_entity: Optional[LegalEntityField] = None

    def to_update(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, mode="json")
