"""
Tests for the onboarding conversation engine against in-memory stores.
"""
import json
from datetime import timedelta

import pytest

from compliance_app.agents.onboarding_agent import INTERVIEW_START_FAILURE_MESSAGE, PARSE_FAILURE_MESSAGE
from compliance_app.agents.onboarding_machine import (
    BusinessBasicInfoForm,
    BusinessDescriptionForm,
    OnboardingPhase,
    UserDetailsForm,
)
from compliance_app.exceptions import (
    GenerativeEndpointError,
    InvalidPhaseError,
    MissingBusinessDataError,
    NoActiveSessionError,
    StructuredPayloadError,
)
from compliance_app.paths import remote_config_path
from compliance_app.services.gemini_service import GeminiService
from compliance_app.services.onboarding_service import OnboardingService
from compliance_app.services.remote_config_service import GEMINI_API_KEY_FLAG, RemoteConfigService

from conftest import NAMESPACE, no_sleep

DONE_REPLY = "Okay, great! I am ready for the compliance dashboard."

CHECKLIST = json.dumps([
    {
        "title": "Sales Tax Registration",
        "description": "Register for VAT with the revenue office.",
        "category": "Taxes",
        "status": "TODO",
        "dueDate": "2024-07-01",
        "issuingAuthority": "HMRC",
        "relevantLaws": ["Value Added Tax Act 1994"],
    },
    {
        "title": "Employer Liability Insurance",
        "description": "Hold a current certificate.",
        "category": "Business Insurance",
        "status": "UPCOMING",
        "dueDate": "",
        "issuingAuthority": "HSE",
    },
])


@pytest.fixture
def engine(profiles, businesses, compliance, remote_config, gemini):
    return OnboardingService(
        profiles,
        businesses,
        compliance,
        remote_config,
        gemini.factory,
        typing_delay=0,
        settle_delay=0,
        sleep=no_sleep,
    )


async def _reach_interview(engine, gemini, business_payload, first_reply="How long have you been trading?"):
    gemini.text_replies.append(first_reply)
    await engine.start("u1", package_id="pro")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    await engine.submit_business_basic_info("u1", BusinessBasicInfoForm(**business_payload))
    return await engine.submit_business_description(
        "u1", BusinessDescriptionForm(description="Weaves cloth for wholesale.")
    )


async def _reach_completion(engine, gemini, business_payload):
    await _reach_interview(engine, gemini, business_payload)
    gemini.text_replies.extend(["Any employees?", "Do you sell online?", "Any food handling?", DONE_REPLY])
    session = None
    for answer in ("Since 2019.", "Four staff.", "Yes, a web shop.", "No."):
        session = await engine.send_message("u1", answer)
    return session


# =============================================================================
# Scripted steps
# =============================================================================

@pytest.mark.asyncio
async def test_scripted_steps_persist_profile_and_business(engine, gemini, profiles, businesses, business_payload):
    """Test name, basics and description are written before the interview starts."""
    session = await _reach_interview(engine, gemini, business_payload)

    profile = await profiles.get_profile("u1")
    assert profile.first_name == "Ada"
    assert profile.last_name == "Lovelace"

    listed = await businesses.list_businesses("u1")
    assert len(listed) == 1
    assert listed[0].id == session.business_id
    assert listed[0].name == "Byron Mills"
    assert listed[0].description == "Weaves cloth for wholesale."
    assert listed[0].owner_id == "u1"

    assert session.phase == OnboardingPhase.AI_INTERVIEW
    assert session.messages[-1].text == "How long have you been trading?"
    assert gemini.api_keys == ["test-key"]


@pytest.mark.asyncio
async def test_business_is_created_with_empty_description(engine, businesses, business_payload):
    """Test the basics step stores the business with an empty description."""
    await engine.start("u1")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    session = await engine.submit_business_basic_info("u1", BusinessBasicInfoForm(**business_payload))

    business = await businesses.get_business("u1", session.business_id)
    assert business.description == ""
    assert session.phase == OnboardingPhase.BUSINESS_DESCRIPTION


@pytest.mark.asyncio
async def test_description_without_business_is_rejected(engine, store):
    """Test the description step before basics raises and writes nothing."""
    await engine.start("u1")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    writes_before = len(store.calls)

    with pytest.raises(MissingBusinessDataError):
        await engine.submit_business_description("u1", BusinessDescriptionForm(description="Anything"))

    assert len(store.calls) == writes_before
    assert engine.get_session("u1").phase == OnboardingPhase.BUSINESS_BASIC_INFO


@pytest.mark.asyncio
async def test_out_of_order_step_is_rejected(engine, business_payload):
    """Test business basics cannot be submitted before the name."""
    await engine.start("u1")

    with pytest.raises(InvalidPhaseError):
        await engine.submit_business_basic_info("u1", BusinessBasicInfoForm(**business_payload))


@pytest.mark.asyncio
async def test_steps_need_an_active_session(engine):
    """Test any step before start raises NoActiveSessionError."""
    with pytest.raises(NoActiveSessionError):
        await engine.send_message("u1", "hello")


@pytest.mark.asyncio
async def test_failed_profile_write_keeps_phase(engine, store):
    """Test a store failure on the name step leaves the session in USER_DETAILS."""
    await engine.start("u1")
    store.fail_writes = RuntimeError("store offline")

    with pytest.raises(RuntimeError):
        await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))

    assert engine.get_session("u1").phase == OnboardingPhase.USER_DETAILS


# =============================================================================
# Interview
# =============================================================================

@pytest.mark.asyncio
async def test_messages_send_full_context(engine, gemini, business_payload):
    """Test each turn sends the prompt plus every prior exchange."""
    await _reach_interview(engine, gemini, business_payload)
    gemini.text_replies.append("Any employees?")

    session = await engine.send_message("u1", "Since 2019.")

    sent = gemini.text_calls[-1]
    assert len(sent) == 3
    assert [c["role"] for c in sent] == ["user", "model", "user"]
    assert sent[-1]["parts"][0]["text"] == "Since 2019."
    assert session.messages[-1].text == "Any employees?"
    assert not any(m.is_typing for m in session.messages)


@pytest.mark.asyncio
async def test_interview_start_failure_stays_in_phase(engine, gemini, business_payload):
    """Test a failed first question keeps AI_INTERVIEW and surfaces the error."""
    with pytest.raises(GenerativeEndpointError):
        await _reach_interview(engine, gemini, business_payload, first_reply=GenerativeEndpointError("quota"))

    session = engine.get_session("u1")
    assert session.phase == OnboardingPhase.AI_INTERVIEW
    assert session.error_message == "quota"
    assert session.messages[-1].text == INTERVIEW_START_FAILURE_MESSAGE


@pytest.mark.asyncio
async def test_missing_api_key_is_reported(store, profiles, businesses, compliance, business_payload):
    """Test an empty remote key surfaces the AI-unavailable error."""
    engine = OnboardingService(
        profiles,
        businesses,
        compliance,
        RemoteConfigService(store, namespace=NAMESPACE),
        GeminiService,
        typing_delay=0,
        settle_delay=0,
        sleep=no_sleep,
    )
    await engine.start("u1")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    await engine.submit_business_basic_info("u1", BusinessBasicInfoForm(**business_payload))

    with pytest.raises(GenerativeEndpointError, match="AI service not available"):
        await engine.submit_business_description("u1", BusinessDescriptionForm(description="Cloth."))

    assert "AI service not available" in engine.get_session("u1").error_message


# =============================================================================
# Completion
# =============================================================================

@pytest.mark.asyncio
async def test_completion_saves_items_and_redirects(engine, gemini, profiles, compliance, business_payload):
    """Test a valid checklist is saved, the flag is set and the session redirects."""
    gemini.structured_replies.append(CHECKLIST)

    session = await _reach_completion(engine, gemini, business_payload)

    assert session.phase == OnboardingPhase.COMPLETION
    assert session.completed
    assert session.redirect_to == "/dashboard"

    items = await compliance.list_items("u1", session.business_id)
    assert sorted(i.title for i in items) == ["Employer Liability Insurance", "Sales Tax Registration"]
    assert all(i.business_id == session.business_id for i in items)
    assert (await profiles.get_profile("u1")).has_completed_onboarding is True

    contents, schema = gemini.structured_calls[0]
    assert schema["type"] == "ARRAY"
    assert contents[-1]["role"] == "user"


@pytest.mark.asyncio
async def test_malformed_checklist_writes_nothing(engine, gemini, profiles, compliance, business_payload):
    """Test an unparseable checklist creates no items and leaves the flag unset."""
    gemini.structured_replies.append('[{"title": "half an item"')

    with pytest.raises(StructuredPayloadError):
        await _reach_completion(engine, gemini, business_payload)

    session = engine.get_session("u1")
    assert session.phase == OnboardingPhase.COMPLETION
    assert session.completion_failed
    assert session.messages[-1].text == PARSE_FAILURE_MESSAGE
    assert await compliance.list_items("u1", session.business_id) == []
    assert (await profiles.get_profile("u1")).has_completed_onboarding is False


@pytest.mark.asyncio
async def test_retry_after_failed_completion(engine, gemini, profiles, business_payload):
    """Test retrying extraction after a failure completes onboarding."""
    gemini.structured_replies.extend([GenerativeEndpointError("overloaded"), CHECKLIST])

    with pytest.raises(GenerativeEndpointError):
        await _reach_completion(engine, gemini, business_payload)
    assert engine.get_session("u1").completion_failed

    session = await engine.retry_completion("u1")

    assert session.completed
    assert session.redirect_to == "/dashboard"
    assert (await profiles.get_profile("u1")).has_completed_onboarding is True
    assert gemini.structured_calls[0][0] == gemini.structured_calls[1][0]


@pytest.mark.asyncio
async def test_empty_checklist_response_is_a_failure(engine, gemini, business_payload):
    """Test a missing structured candidate is reported as a completion failure."""
    gemini.structured_replies.append(None)

    with pytest.raises(GenerativeEndpointError):
        await _reach_completion(engine, gemini, business_payload)

    assert engine.get_session("u1").completion_failed


@pytest.mark.asyncio
async def test_discard_forgets_session(engine):
    """Test a discarded session is gone."""
    await engine.start("u1")
    engine.discard("u1")

    assert engine.get_session("u1") is None


@pytest.mark.asyncio
async def test_retry_after_partial_write_does_not_duplicate_items(engine, gemini, compliance, business_payload):
    """Test items saved by a run that failed midway are replaced, not duplicated, on retry."""
    gemini.structured_replies.extend([CHECKLIST, CHECKLIST])
    original_add = compliance.add_item
    attempts = []

    async def flaky_add(user_id, business_id, data):
        attempts.append(data.title)
        if len(attempts) == 2:
            raise RuntimeError("store offline")
        return await original_add(user_id, business_id, data)

    compliance.add_item = flaky_add

    with pytest.raises(RuntimeError):
        await _reach_completion(engine, gemini, business_payload)
    failed = engine.get_session("u1")
    assert failed.completion_failed
    assert len(failed.saved_item_ids) == 1

    session = await engine.retry_completion("u1")

    items = await compliance.list_items("u1", session.business_id)
    assert sorted(i.title for i in items) == ["Employer Liability Insurance", "Sales Tax Registration"]
    assert session.completed


@pytest.mark.asyncio
async def test_selected_package_is_applied_on_completion(engine, gemini, profiles, business_payload):
    """Test the package chosen before onboarding is subscribed once the checklist is saved."""
    gemini.structured_replies.append(CHECKLIST)

    await _reach_completion(engine, gemini, business_payload)

    profile = await profiles.get_profile("u1")
    assert profile.is_subscribed is True
    assert profile.subscription_package_id == "pro"
    assert profile.has_trial_used is True


@pytest.mark.asyncio
async def test_unknown_package_is_rejected_at_start(engine):
    """Test onboarding cannot start with a package that does not exist."""
    with pytest.raises(ValueError):
        await engine.start("u1", package_id="gold")

    assert engine.get_session("u1") is None


# =============================================================================
# Restarts and remote config
# =============================================================================

@pytest.mark.asyncio
async def test_restart_reuses_existing_business(engine, businesses, business_payload):
    """Test restarting onboarding updates the earlier business instead of adding another."""
    await engine.start("u1")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    first = await engine.submit_business_basic_info("u1", BusinessBasicInfoForm(**business_payload))

    await engine.start("u1")
    await engine.submit_user_details("u1", UserDetailsForm(first_name="Ada", last_name="Lovelace"))
    second = await engine.submit_business_basic_info(
        "u1", BusinessBasicInfoForm(**dict(business_payload, name="Byron Dyeworks"))
    )

    listed = await businesses.list_businesses("u1")
    assert [b.id for b in listed] == [first.business_id]
    assert second.business_id == first.business_id
    assert listed[0].name == "Byron Dyeworks"
    assert listed[0].description == ""


@pytest.mark.asyncio
async def test_rotated_api_key_is_picked_up_after_fetch_interval(store, profiles, businesses, compliance, gemini,
                                                                 business_payload):
    """Test each Gemini call re-reads the flag once the minimum fetch interval has passed."""
    flags = remote_config_path(NAMESPACE)
    await store.merge_set(flags, {"parameters": {GEMINI_API_KEY_FLAG: "key-1"}})
    engine = OnboardingService(
        profiles,
        businesses,
        compliance,
        RemoteConfigService(store, minimum_fetch_interval=timedelta(0), namespace=NAMESPACE),
        gemini.factory,
        typing_delay=0,
        settle_delay=0,
        sleep=no_sleep,
    )
    await _reach_interview(engine, gemini, business_payload)

    await store.merge_set(flags, {"parameters": {GEMINI_API_KEY_FLAG: "key-2"}})
    gemini.text_replies.append("Any employees?")
    await engine.send_message("u1", "Since 2019.")

    assert gemini.api_keys == ["key-1", "key-2"]
