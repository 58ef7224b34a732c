"""
Onboarding conversation state machine.

Every transition takes the current session and returns the next session
plus the effects the caller must carry out (a Gemini call, a redirect).
Nothing here performs I/O; persistence happens in the onboarding service
before a transition is applied.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, NamedTuple, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field, field_validator

from compliance_app.agents.onboarding_agent import (
    BUSINESS_BASIC_INFO_PROMPT,
    BUSINESS_DESCRIPTION_PROMPT,
    COMPLETION_MESSAGE,
    COMPLIANCE_ITEMS_SCHEMA,
    ENDPOINT_FAILURE_MESSAGE,
    GENERATING_MESSAGE,
    GREETING,
    NO_RESPONSE_MESSAGE,
    SAVED_MESSAGE,
    USER_DETAILS_PROMPT,
    build_extraction_prompt,
    build_interview_prompt,
    is_completion_signal,
)
from compliance_app.exceptions import InvalidPhaseError, MissingBusinessDataError
from compliance_app.models.business import Address, Business, BusinessCreate, BusinessUpdate, LegalEntityField

DASHBOARD_ROUTE = "/dashboard"


class OnboardingPhase(str, Enum):
    INITIAL_GREETING = "INITIAL_GREETING"
    USER_DETAILS = "USER_DETAILS"
    BUSINESS_BASIC_INFO = "BUSINESS_BASIC_INFO"
    BUSINESS_DESCRIPTION = "BUSINESS_DESCRIPTION"
    AI_INTERVIEW = "AI_INTERVIEW"
    COMPLETION = "COMPLETION"


class ChatMessage(BaseModel):
    """A line of the user-visible transcript."""
    sender: Literal["user", "ai"]
    text: str
    is_typing: bool = False

    class Config:
        frozen = True


class ContextEntry(BaseModel):
    """A line of the transcript sent to Gemini."""
    role: Literal["user", "model"]
    text: str

    class Config:
        frozen = True

    def to_content(self) -> Dict[str, Any]:
        return {"role": self.role, "parts": [{"text": self.text}]}


class UserDetailsForm(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class BusinessBasicInfoForm(BaseModel):
    name: str = Field(min_length=1)
    address: Address
    phone: str = Field(min_length=1)
    type: str = Field(min_length=1)
    legal_entity: LegalEntityField

    @field_validator("name", "phone", "type", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    def to_business_create(self) -> BusinessCreate:
        return BusinessCreate(
            name=self.name,
            address=self.address,
            phone=self.phone,
            type=self.type,
            legal_entity=self.legal_entity,
            description="",
        )

    def to_business_update(self) -> BusinessUpdate:
        """Overwrite the basics of a business left over from an earlier attempt."""
        return BusinessUpdate(
            name=self.name,
            address=self.address,
            phone=self.phone,
            type=self.type,
            legal_entity=self.legal_entity,
            description="",
        )


class BusinessDescriptionForm(BaseModel):
    description: str = Field(min_length=1)

    @field_validator("description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ConversationSession(BaseModel):
    user_id: str
    phase: OnboardingPhase = OnboardingPhase.INITIAL_GREETING
    messages: Tuple[ChatMessage, ...] = ()
    context: Tuple[ContextEntry, ...] = ()
    package_id: Optional[str] = None
    user_details: Optional[UserDetailsForm] = None
    business_id: Optional[str] = None
    business: Optional[Business] = None
    error_message: Optional[str] = None
    completion_failed: bool = False
    saved_item_ids: Tuple[str, ...] = ()
    completed: bool = False
    redirect_to: Optional[str] = None

    class Config:
        frozen = True

    def contents(self) -> List[Dict[str, Any]]:
        return [entry.to_content() for entry in self.context]


@dataclass(frozen=True)
class RequestInterviewReply:
    contents: List[Dict[str, Any]]


@dataclass(frozen=True)
class RequestComplianceItems:
    contents: List[Dict[str, Any]]
    schema: Dict[str, Any]


@dataclass(frozen=True)
class Redirect:
    path: str
    delay_seconds: float


Effect = Union[RequestInterviewReply, RequestComplianceItems, Redirect]


class Transition(NamedTuple):
    session: ConversationSession
    effects: Tuple[Effect, ...] = ()


def _ai(session: ConversationSession, text: str) -> ConversationSession:
    return session.model_copy(update={"messages": session.messages + (ChatMessage(sender="ai", text=text),)})


def _user(session: ConversationSession, text: str) -> ConversationSession:
    return session.model_copy(update={"messages": session.messages + (ChatMessage(sender="user", text=text),)})


def require_phase(session: ConversationSession, phase: OnboardingPhase) -> None:
    if session.phase != phase:
        raise InvalidPhaseError(phase.value, session.phase.value)


def require_business_id(session: ConversationSession) -> str:
    if not session.business_id:
        raise MissingBusinessDataError()
    return session.business_id


def start_session(user_id: str, package_id: Optional[str] = None) -> Transition:
    """Greet, then move straight on to asking for the user's name."""
    session = _ai(ConversationSession(user_id=user_id, package_id=package_id), GREETING)
    session = _ai(session.model_copy(update={"phase": OnboardingPhase.USER_DETAILS}), USER_DETAILS_PROMPT)
    return Transition(session)


def record_user_details(session: ConversationSession, form: UserDetailsForm) -> Transition:
    require_phase(session, OnboardingPhase.USER_DETAILS)
    session = _user(session, f"My name is {form.first_name} {form.last_name}.")
    session = session.model_copy(update={
        "phase": OnboardingPhase.BUSINESS_BASIC_INFO,
        "user_details": form,
        "error_message": None,
    })
    return Transition(_ai(session, BUSINESS_BASIC_INFO_PROMPT))


def record_business_created(
    session: ConversationSession,
    form: BusinessBasicInfoForm,
    business_id: str,
) -> Transition:
    require_phase(session, OnboardingPhase.BUSINESS_BASIC_INFO)
    session = _user(session, f"My business is {form.name}, a {form.type} in {form.address.city}.")
    session = session.model_copy(update={
        "phase": OnboardingPhase.BUSINESS_DESCRIPTION,
        "business_id": business_id,
        "error_message": None,
    })
    return Transition(_ai(session, BUSINESS_DESCRIPTION_PROMPT))


def record_business_description(session: ConversationSession, business: Business) -> Transition:
    """
    The description is saved; the interview starts with both transcripts
    cleared and the interview prompt as the only context entry.
    """
    require_business_id(session)
    require_phase(session, OnboardingPhase.BUSINESS_DESCRIPTION)
    prompt = ContextEntry(role="user", text=build_interview_prompt(business))
    session = session.model_copy(update={
        "phase": OnboardingPhase.AI_INTERVIEW,
        "business": business,
        "messages": (),
        "context": (prompt,),
        "error_message": None,
    })
    return Transition(session, (RequestInterviewReply(session.contents()),))


def record_user_message(session: ConversationSession, text: str) -> Transition:
    """Append the answer and a typing placeholder; the reply is requested afterwards."""
    require_phase(session, OnboardingPhase.AI_INTERVIEW)
    session = _user(session, text)
    session = session.model_copy(update={
        "messages": session.messages + (ChatMessage(sender="ai", text="", is_typing=True),),
        "context": session.context + (ContextEntry(role="user", text=text),),
        "error_message": None,
    })
    return Transition(session, (RequestInterviewReply(session.contents()),))


def clear_typing(session: ConversationSession) -> ConversationSession:
    return session.model_copy(update={"messages": tuple(m for m in session.messages if not m.is_typing)})


def record_ai_reply(
    session: ConversationSession,
    text: Optional[str],
    completion_phrases: Sequence[str],
    min_context_entries: int,
) -> Transition:
    """
    A reply that contains a completion phrase ends the interview once the
    context holds more than `min_context_entries` entries.
    """
    require_phase(session, OnboardingPhase.AI_INTERVIEW)
    session = clear_typing(session)
    if not text:
        return Transition(_ai(session, NO_RESPONSE_MESSAGE))

    session = _ai(session, text).model_copy(update={
        "context": session.context + (ContextEntry(role="model", text=text),),
    })
    if is_completion_signal(text, completion_phrases) and len(session.context) > min_context_entries:
        return enter_completion(session)
    return Transition(session)


def enter_completion(session: ConversationSession) -> Transition:
    if session.business is None:
        raise MissingBusinessDataError("Business data not found for compliance extraction.")
    prompt = build_extraction_prompt(session.business, session.context)
    session = _ai(session, COMPLETION_MESSAGE)
    session = _ai(session, GENERATING_MESSAGE).model_copy(update={
        "phase": OnboardingPhase.COMPLETION,
        "context": session.context + (ContextEntry(role="user", text=prompt),),
    })
    return Transition(session, (RequestComplianceItems(session.contents(), COMPLIANCE_ITEMS_SCHEMA),))


def record_endpoint_failure(
    session: ConversationSession,
    error: str,
    message: Optional[str] = None,
) -> Transition:
    """The conversation stays in its phase; only the error is surfaced."""
    session = clear_typing(session).model_copy(update={"error_message": error})
    return Transition(_ai(session, message or ENDPOINT_FAILURE_MESSAGE))


def record_completion_saved(session: ConversationSession, settle_delay: float) -> Transition:
    require_phase(session, OnboardingPhase.COMPLETION)
    session = _ai(session, SAVED_MESSAGE).model_copy(update={
        "completed": True,
        "completion_failed": False,
        "error_message": None,
        "redirect_to": DASHBOARD_ROUTE,
    })
    return Transition(session, (Redirect(DASHBOARD_ROUTE, settle_delay),))


def record_completion_failed(
    session: ConversationSession,
    error: str,
    message: str,
    saved_item_ids: Optional[Sequence[str]] = None,
) -> Transition:
    """`saved_item_ids` are items a partial run wrote; the next attempt removes them first."""
    require_phase(session, OnboardingPhase.COMPLETION)
    update: Dict[str, Any] = {"completion_failed": True, "error_message": error}
    if saved_item_ids is not None:
        update["saved_item_ids"] = tuple(saved_item_ids)
    return Transition(_ai(session, message).model_copy(update=update))


def retry_completion(session: ConversationSession) -> Transition:
    """Re-send the extraction request; the prompt is already the last context entry."""
    require_phase(session, OnboardingPhase.COMPLETION)
    if session.completed or not session.completion_failed:
        raise InvalidPhaseError("COMPLETION (failed)", session.phase.value)
    session = _ai(session, GENERATING_MESSAGE).model_copy(update={"completion_failed": False, "error_message": None})
    return Transition(session, (RequestComplianceItems(session.contents(), COMPLIANCE_ITEMS_SCHEMA),))
