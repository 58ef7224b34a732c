import json
import re
from typing import Any, Dict, Iterable, List, Sequence

from pydantic import TypeAdapter, ValidationError

from compliance_app.exceptions import StructuredPayloadError
from compliance_app.models.business import Business
from compliance_app.models.compliance_item import ComplianceCategory, ComplianceItemDraft, ComplianceStatus
from compliance_app.services.gemini_service import GeminiService


GREETING = (
    "Hello! I'm your AI Business Compliance Assistant. I'll guide you through setting up your business "
    "for comprehensive regulatory compliance. To make sure nothing is missed, no matter how small or large "
    "your business is, **please give detailed and thorough answers to my questions**. Picture yourself "
    "explaining your business to an expert who needs every nuance to give precise regulatory guidance."
)

USER_DETAILS_PROMPT = "First, what is your first name and last name?"

BUSINESS_BASIC_INFO_PROMPT = (
    "Great! Now some basic information about your primary business location: the business name, full "
    "street address, city, state, zip code, country, phone number, its legal entity type (Sole "
    "Proprietorship, LLC, Corporation, Partnership or Non-profit) and its general type (e.g., Restaurant, "
    "Retail, Consulting, Health Clinic)."
)

BUSINESS_DESCRIPTION_PROMPT = (
    "Please describe your business in detail. This is very important! The more you tell me, the better I "
    "can identify every relevant compliance requirement. Cover your products and services, operational "
    "processes, target customers, physical locations, online presence and anything unusual about your "
    "business model."
)

COMPLETION_MESSAGE = (
    "Thank you for providing all the necessary information! Your compliance dashboard is now being set up "
    "based on our conversation. This may take a moment. You will be redirected shortly."
)

GENERATING_MESSAGE = "Generating your personalized compliance checklist..."
SAVED_MESSAGE = "Your compliance checklist has been successfully generated and saved!"
NO_RESPONSE_MESSAGE = "I could not generate a response. Please try again."
ENDPOINT_FAILURE_MESSAGE = "I am experiencing a technical issue and cannot respond. Please try again later."
INTERVIEW_START_FAILURE_MESSAGE = "I am having trouble starting our detailed interview. Please try again."
PARSE_FAILURE_MESSAGE = "I had trouble processing the generated compliance data. Please contact support."
NO_CHECKLIST_MESSAGE = "I could not generate your compliance checklist. Please try again."
FINALIZE_FAILURE_MESSAGE = "An error occurred during final setup. Please contact support."

COMPLETION_SENTENCE = (
    "I believe I have enough information now. Thank you for your detailed responses. "
    "I am ready to generate your compliance dashboard."
)

INTERVIEW_SYSTEM_PROMPT = """
        You are an expert consultant in business regulatory compliance, tax, employment law, OSHA,
        health and safety, business insurance, and state and local licenses and permits.
        Your goal is to interview a business owner with detailed, specific questions until you can
        identify ALL laws, rules and regulations that apply to their business, including obligations
        they may be missing or unaware of. Cover every possibility regardless of business size.
        Remind the owner that detailed, thorough answers matter.

        ────────────────────────────────────────
        INTERVIEW RULES (HARD)
        ────────────────────────────────────────
        1. Ask ONLY ONE question at a time, then wait for the answer.
        2. Do NOT give compliance advice or general explanations during the interview. You MAY cite the
           specific law, rule or regulation that prompts a question, then ask again for a detailed answer.
        3. Ask follow-up questions whenever an answer is incomplete or reveals a new compliance area.
           Compliance details and action items belong on the dashboard, not in this interview.
        4. Keep going until you understand the operations, their nuances, and which local, state and
           federal agencies regulate the business. Adapt to the owner's knowledge level.
        5. When, and only when, you have enough information for a comprehensive list of compliance
           items, say exactly: "{completion_sentence}"

        ────────────────────────────────────────
        FIRST QUESTIONS
        ────────────────────────────────────────
        - How long has the business been operating, or is it a new startup that needs complete
          start-up guidance?
        - Given the legal entity ({legal_entity}), ask about internal governance obligations such as
          operating agreements, bylaws, or multiple members/shareholders.

        Questions MUST be relevant to the business details and to the answers received. Do not ask
        generic questions (e.g. about food handling) that the business type or description does not
        suggest. Online businesses: data privacy, cross-state sales, digital accessibility. Physical
        retail: zoning, signage, accessibility, OSHA. Services: professional licensing, client data,
        insurance. Ask about previous violations, the agency involved and how they were resolved.
        Before finishing, ask whether there is anything you have not asked about that you should
        consider.

        ────────────────────────────────────────
        BUSINESS
        ────────────────────────────────────────
        Business Name: {name}
        Business Type: {business_type}
        Legal Entity: {legal_entity}
        Location: {location}
        Phone: {phone}
        Detailed Business Description: {description}

        Begin with your first question about the business's stage and legal structure.
"""

EXTRACTION_PROMPT = """
        Based on our entire conversation and the business details below, generate a comprehensive
        list of regulatory compliance items. For each item provide:
        - title: a concise title (e.g. "Annual Business License Renewal")
        - description: a detailed explanation of the requirement
        - category: one of {categories}
        - status: "TODO" or "UPCOMING"
        - dueDate: a plausible ISO 8601 date (YYYY-MM-DD), or an empty string if not applicable
        - nextReviewDate: an ISO 8601 date for recurring items, or an empty string
        - frequency: e.g. "Annually", "Quarterly", "Monthly", "One-time"
        - issuingAuthority: the government body or organization (e.g. "IRS", "Local Health Dept.")
        - relevantLaws: a list of relevant laws/regulations, possibly empty
        - requiredDocuments: a list of required documents, possibly empty
        - notes: additional considerations, or an empty string
        - attachments: a list of placeholder attachment names, possibly empty
        - lastCompletedDate: ISO 8601 date the item was last completed, or an empty string

        OUTPUT RULES (HARD)
        - One item per distinct, actionable compliance obligation. Do NOT bundle unrelated
          obligations under one broad title: instead of "All State Licenses" list "State Business
          Operating License", "State Sales Tax Permit", and so on as separate items.
        - Respond ONLY with a JSON array of these objects. No text outside the JSON.

        Business Details:
        Name: {name}
        Type: {business_type}
        Description: {description}
        Location: {city}, {state}
        Legal Entity: {legal_entity}

        Chat History Summary:
        {history}
"""


def _string_list() -> Dict[str, Any]:
    return {"type": "ARRAY", "items": {"type": "STRING"}}


COMPLIANCE_ITEMS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "description": {"type": "STRING"},
            "category": {"type": "STRING", "enum": [c.value for c in ComplianceCategory]},
            "status": {"type": "STRING", "enum": [ComplianceStatus.TODO.value, ComplianceStatus.UPCOMING.value]},
            "dueDate": {"type": "STRING", "nullable": True},
            "nextReviewDate": {"type": "STRING", "nullable": True},
            "frequency": {"type": "STRING", "nullable": True},
            "issuingAuthority": {"type": "STRING"},
            "relevantLaws": _string_list(),
            "requiredDocuments": _string_list(),
            "notes": {"type": "STRING", "nullable": True},
            "attachments": _string_list(),
            "lastCompletedDate": {"type": "STRING", "nullable": True},
        },
        "required": [
            "title",
            "description",
            "category",
            "status",
            "issuingAuthority",
            "relevantLaws",
            "requiredDocuments",
        ],
    },
}

_drafts_adapter = TypeAdapter(List[ComplianceItemDraft])


def build_interview_prompt(business: Business) -> str:
    return INTERVIEW_SYSTEM_PROMPT.format(
        completion_sentence=COMPLETION_SENTENCE,
        name=business.name,
        business_type=business.type,
        legal_entity=business.legal_entity.value,
        location=business.location(),
        phone=business.phone,
        description=business.description or "No detailed description provided yet.",
    )


def summarize_history(entries: Iterable[Any]) -> str:
    return "\n".join(f"{entry.role}: {entry.text}" for entry in entries)


def build_extraction_prompt(business: Business, history: Iterable[Any]) -> str:
    return EXTRACTION_PROMPT.format(
        categories=", ".join(f'"{c.value}"' for c in ComplianceCategory),
        name=business.name,
        business_type=business.type,
        description=business.description,
        city=business.address.city,
        state=business.address.state,
        legal_entity=business.legal_entity.value,
        history=summarize_history(history),
    )


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower().strip())


def is_completion_signal(text: str, phrases: Sequence[str]) -> bool:
    normalized = normalize_text(text)
    return any(normalize_text(phrase) in normalized for phrase in phrases if phrase.strip())


def parse_compliance_drafts(raw: str) -> List[ComplianceItemDraft]:
    """
    Validate the structured extraction payload. Every draft is validated
    before any of them is used, so a bad entry rejects the whole payload.
    """
    candidate = GeminiService.strip_code_fences(raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise StructuredPayloadError(f"Compliance payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
        raise StructuredPayloadError("Compliance payload must be a JSON array of objects")
    try:
        return _drafts_adapter.validate_python(data)
    except ValidationError as exc:
        raise StructuredPayloadError(f"Compliance payload has invalid items: {exc.error_count()} error(s)") from exc
