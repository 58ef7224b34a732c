"""Compliance item models for the per-business obligation checklist."""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional
from pydantic import BaseModel, BeforeValidator, Field

from compliance_app.models.common import as_utc, to_date, to_store_timestamp


class ComplianceStatus(str, Enum):
    TODO = "TODO"
    UPCOMING = "UPCOMING"
    COMPLETED = "COMPLETED"


class ComplianceCategory(str, Enum):
    TAXES = "Taxes"
    LICENSES = "Licenses"
    SAFETY = "Safety"
    HR_EMPLOYEE_LAW = "HR & Employee Law"
    INSURANCE = "Business Insurance"
    REGULATORY_GUIDANCE = "Advanced Regulatory Guidance"
    ENVIRONMENTAL = "Environmental"
    HEALTH_SAFETY = "Health & Safety"
    PERMITS = "Permits"


DATE_FIELDS = ("due_date", "last_completed_date", "next_review_date")

OptionalDate = Annotated[Optional[date], BeforeValidator(to_date)]


def _none_if_blank(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _list_or_empty(value: Any) -> Any:
    return [] if value is None else value


OptionalText = Annotated[Optional[str], BeforeValidator(_none_if_blank)]
StringList = Annotated[List[str], BeforeValidator(_list_or_empty)]


class ComplianceItem(BaseModel):
    """A single trackable obligation, scoped under (owner, business)."""
    id: str
    business_id: str
    owner_id: str
    title: str
    description: str = ""
    category: ComplianceCategory
    status: ComplianceStatus = ComplianceStatus.TODO
    due_date: date
    frequency: Optional[str] = None
    issuing_authority: str = ""
    relevant_laws: List[str] = Field(default_factory=list)
    required_documents: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    last_completed_date: Optional[date] = None
    next_review_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        from_attributes = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ComplianceItem":
        return cls(
            id=data["id"],
            business_id=data.get("business_id", ""),
            owner_id=data.get("owner_id", ""),
            title=data.get("title", ""),
            description=data.get("description") or "",
            category=data.get("category"),
            status=data.get("status") or ComplianceStatus.TODO,
            due_date=to_date(data.get("due_date")),
            frequency=data.get("frequency"),
            issuing_authority=data.get("issuing_authority") or "",
            relevant_laws=data.get("relevant_laws") or [],
            required_documents=data.get("required_documents") or [],
            notes=data.get("notes"),
            attachments=data.get("attachments") or [],
            last_completed_date=to_date(data.get("last_completed_date")),
            next_review_date=to_date(data.get("next_review_date")),
            created_at=as_utc(data.get("created_at")),
            updated_at=as_utc(data.get("updated_at")),
        )


def _store_dates(document: Dict[str, Any]) -> Dict[str, Any]:
    for field in DATE_FIELDS:
        if field in document:
            document[field] = to_store_timestamp(document[field])
    return document


class ComplianceItemCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    category: ComplianceCategory
    status: ComplianceStatus = ComplianceStatus.TODO
    due_date: date
    frequency: Optional[str] = None
    issuing_authority: str = ""
    relevant_laws: List[str] = Field(default_factory=list)
    required_documents: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    last_completed_date: Optional[date] = None
    next_review_date: Optional[date] = None

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump(exclude_none=True)
        document["category"] = self.category.value
        document["status"] = self.status.value
        return _store_dates(document)


class ComplianceItemUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ComplianceCategory] = None
    status: Optional[ComplianceStatus] = None
    due_date: Optional[date] = None
    frequency: Optional[str] = None
    issuing_authority: Optional[str] = None
    relevant_laws: Optional[List[str]] = None
    required_documents: Optional[List[str]] = None
    notes: Optional[str] = None
    attachments: Optional[List[str]] = None
    last_completed_date: Optional[date] = None
    next_review_date: Optional[date] = None

    def to_update(self) -> Dict[str, Any]:
        update = self.model_dump(exclude_unset=True, exclude_none=True)
        if self.category is not None:
            update["category"] = self.category.value
        if self.status is not None:
            update["status"] = self.status.value
        return _store_dates(update)


class ComplianceItemDraft(BaseModel):
    """
    One entry of the structured list returned by the extraction prompt.
    Field names follow the response schema sent to Gemini.
    """
    title: str = Field(min_length=1)
    description: str
    category: ComplianceCategory
    status: Literal["TODO", "UPCOMING"]
    due_date: OptionalDate = Field(default=None, alias="dueDate")
    next_review_date: OptionalDate = Field(default=None, alias="nextReviewDate")
    frequency: OptionalText = None
    issuing_authority: str = Field(alias="issuingAuthority")
    relevant_laws: StringList = Field(default_factory=list, alias="relevantLaws")
    required_documents: StringList = Field(default_factory=list, alias="requiredDocuments")
    notes: OptionalText = None
    attachments: StringList = Field(default_factory=list)
    last_completed_date: OptionalDate = Field(default=None, alias="lastCompletedDate")

    class Config:
        populate_by_name = True

    def to_create(self, today: date) -> ComplianceItemCreate:
        """Normalize optional fields; a missing due date becomes `today`."""
        return ComplianceItemCreate(
            title=self.title,
            description=self.description,
            category=self.category,
            status=ComplianceStatus(self.status),
            due_date=self.due_date or today,
            frequency=self.frequency,
            issuing_authority=self.issuing_authority,
            relevant_laws=self.relevant_laws,
            required_documents=self.required_documents,
            notes=self.notes,
            attachments=self.attachments,
            last_completed_date=self.last_completed_date,
            next_review_date=self.next_review_date,
        )
