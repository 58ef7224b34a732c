"""
Onboarding Service
Drives one onboarding conversation per user.

Each step persists first (profile name, business, description) and only then
advances the session, so a failed write leaves the conversation where it was.
Gemini calls and the final redirect are effects returned by the state
machine and carried out here in order.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from compliance_app.agents import onboarding_machine as machine
from compliance_app.agents.onboarding_agent import (
    FINALIZE_FAILURE_MESSAGE,
    INTERVIEW_START_FAILURE_MESSAGE,
    NO_CHECKLIST_MESSAGE,
    PARSE_FAILURE_MESSAGE,
    parse_compliance_drafts,
)
from compliance_app.agents.onboarding_machine import (
    BusinessBasicInfoForm,
    BusinessDescriptionForm,
    ConversationSession,
    OnboardingPhase,
    Transition,
    UserDetailsForm,
)
from compliance_app.config import _now_utc, settings
from compliance_app.exceptions import (
    GenerativeEndpointError,
    MissingBusinessDataError,
    NoActiveSessionError,
    StructuredPayloadError,
)
from compliance_app.models.business import BusinessUpdate
from compliance_app.models.users import ProfileUpdate
from compliance_app.services.business_service import BusinessService, active_business, business_service
from compliance_app.services.compliance_service import ComplianceService, compliance_service
from compliance_app.services.gemini_service import GeminiService
from compliance_app.services.profile_service import PACKAGES, ProfileService, profile_service, require_user
from compliance_app.services.remote_config_service import (
    GEMINI_API_KEY_FLAG,
    RemoteConfigService,
    remote_config_service,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class OnboardingService:
    def __init__(
        self,
        profiles: Optional[ProfileService] = None,
        businesses: Optional[BusinessService] = None,
        compliance: Optional[ComplianceService] = None,
        remote_config: Optional[RemoteConfigService] = None,
        gemini_factory: Optional[Callable[[str], GeminiService]] = None,
        completion_phrases: Optional[Iterable[str]] = None,
        min_context_entries: Optional[int] = None,
        typing_delay: Optional[float] = None,
        settle_delay: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.profiles = profiles or profile_service
        self.businesses = businesses or business_service
        self.compliance = compliance or compliance_service
        self.remote_config = remote_config or remote_config_service
        self.gemini_factory = gemini_factory or GeminiService
        self.completion_phrases = list(
            completion_phrases if completion_phrases is not None else settings.onboarding_completion_phrases
        )
        self.min_context_entries = (
            min_context_entries if min_context_entries is not None else settings.onboarding_min_context_entries
        )
        self.typing_delay = typing_delay if typing_delay is not None else settings.onboarding_typing_delay_seconds
        self.settle_delay = settle_delay if settle_delay is not None else settings.onboarding_settle_delay_seconds
        self._sleep = sleep
        self._sessions: Dict[str, ConversationSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Session registry
    # ------------------------------------------------------------------

    def get_session(self, user_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(user_id)

    def discard(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)
        self._locks.pop(user_id, None)

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _require_session(self, user_id: str) -> ConversationSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise NoActiveSessionError()
        return session

    def _save(self, session: ConversationSession) -> ConversationSession:
        self._sessions[session.user_id] = session
        return session

    async def _save_business(self, uid: str, form: BusinessBasicInfoForm) -> str:
        """Reuse the user's business from an earlier, restarted onboarding; otherwise create one."""
        existing = active_business(await self.businesses.list_businesses(uid))
        if existing is None:
            return await self.businesses.add_business(uid, form.to_business_create())
        await self.businesses.update_business(uid, existing.id, form.to_business_update())
        logger.info("Reusing business %s for onboarding of user %s", existing.id, uid)
        return existing.id

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def start(self, user_id: Optional[str], package_id: Optional[str] = None) -> ConversationSession:
        """Begin (or restart) onboarding with the greeting and the name prompt."""
        uid = require_user(user_id)
        if package_id is not None and package_id not in {p["id"] for p in PACKAGES}:
            raise ValueError(f"Unknown package: {package_id}")
        async with self._lock(uid):
            transition = machine.start_session(uid, package_id)
            logger.info("Onboarding started for user %s", uid)
            return self._save(transition.session)

    async def submit_user_details(self, user_id: Optional[str], form: UserDetailsForm) -> ConversationSession:
        uid = require_user(user_id)
        async with self._lock(uid):
            session = self._require_session(uid)
            machine.require_phase(session, OnboardingPhase.USER_DETAILS)
            await self.profiles.update_profile(
                uid,
                ProfileUpdate(first_name=form.first_name, last_name=form.last_name),
            )
            return self._save(machine.record_user_details(session, form).session)

    async def submit_business_basic_info(
        self,
        user_id: Optional[str],
        form: BusinessBasicInfoForm,
    ) -> ConversationSession:
        uid = require_user(user_id)
        async with self._lock(uid):
            session = self._require_session(uid)
            machine.require_phase(session, OnboardingPhase.BUSINESS_BASIC_INFO)
            business_id = await self._save_business(uid, form)
            return self._save(machine.record_business_created(session, form, business_id).session)

    async def submit_business_description(
        self,
        user_id: Optional[str],
        form: BusinessDescriptionForm,
    ) -> ConversationSession:
        """Save the description, then open the interview with the first Gemini question."""
        uid = require_user(user_id)
        async with self._lock(uid):
            session = self._require_session(uid)
            business_id = machine.require_business_id(session)
            machine.require_phase(session, OnboardingPhase.BUSINESS_DESCRIPTION)

            await self.businesses.update_business(uid, business_id, BusinessUpdate(description=form.description))
            business = await self.businesses.get_business(uid, business_id)
            if business is None:
                raise MissingBusinessDataError("Business data not found for AI interview.")

            transition = machine.record_business_description(session, business)
            self._save(transition.session)
            return await self._run(transition, failure_message=INTERVIEW_START_FAILURE_MESSAGE)

    async def send_message(self, user_id: Optional[str], text: str) -> ConversationSession:
        uid = require_user(user_id)
        async with self._lock(uid):
            session = self._require_session(uid)
            transition = machine.record_user_message(session, text)
            self._save(transition.session)
            await self._sleep(self.typing_delay)
            return await self._run(transition)

    async def retry_completion(self, user_id: Optional[str]) -> ConversationSession:
        """Re-run extraction after a failed completion."""
        uid = require_user(user_id)
        async with self._lock(uid):
            session = self._require_session(uid)
            transition = machine.retry_completion(session)
            self._save(transition.session)
            return await self._run(transition)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def _refresh_remote_config(self) -> None:
        """Activate flags once, then re-fetch whenever the minimum fetch interval has passed."""
        await self.remote_config.initialize()
        await self.remote_config.fetch_and_activate()

    def _gemini(self) -> GeminiService:
        return self.gemini_factory(self.remote_config.get_string(GEMINI_API_KEY_FLAG))

    async def _run(self, transition: Transition, failure_message: Optional[str] = None) -> ConversationSession:
        session = transition.session
        pending = list(transition.effects)
        while pending:
            effect = pending.pop(0)
            if isinstance(effect, machine.RequestInterviewReply):
                next_transition = await self._interview_reply(session, effect, failure_message)
            elif isinstance(effect, machine.RequestComplianceItems):
                next_transition = await self._complete(session, effect)
            elif isinstance(effect, machine.Redirect):
                await self._sleep(effect.delay_seconds)
                logger.info("Onboarding finished for user %s; redirecting to %s", session.user_id, effect.path)
                next_transition = Transition(session)
            else:
                raise TypeError(f"Unknown onboarding effect: {effect!r}")
            session = self._save(next_transition.session)
            pending.extend(next_transition.effects)
        return session

    async def _interview_reply(
        self,
        session: ConversationSession,
        effect: machine.RequestInterviewReply,
        failure_message: Optional[str],
    ) -> Transition:
        await self._refresh_remote_config()
        try:
            reply = await self._gemini().generate_text(effect.contents)
        except GenerativeEndpointError as exc:
            logger.error("Gemini interview call failed for user %s: %s", session.user_id, exc)
            failed = machine.record_endpoint_failure(session, str(exc), failure_message)
            self._save(failed.session)
            raise
        return machine.record_ai_reply(session, reply, self.completion_phrases, self.min_context_entries)

    async def _complete(
        self,
        session: ConversationSession,
        effect: machine.RequestComplianceItems,
    ) -> Transition:
        """
        Extraction, then items, then the onboarding flag. The whole payload is
        validated before the first write, so a bad payload leaves no items and
        the flag unset.
        """
        uid = session.user_id
        business_id = machine.require_business_id(session)
        await self._refresh_remote_config()

        try:
            raw = await self._gemini().generate_structured(effect.contents, effect.schema)
        except GenerativeEndpointError as exc:
            logger.error("Gemini extraction call failed for user %s: %s", uid, exc)
            self._save(machine.record_completion_failed(session, str(exc), NO_CHECKLIST_MESSAGE).session)
            raise
        if not raw:
            error = GenerativeEndpointError("Gemini returned no compliance checklist")
            self._save(machine.record_completion_failed(session, str(error), NO_CHECKLIST_MESSAGE).session)
            raise error

        try:
            drafts = parse_compliance_drafts(raw)
        except StructuredPayloadError as exc:
            logger.error("Compliance payload rejected for user %s: %s", uid, exc)
            self._save(machine.record_completion_failed(session, str(exc), PARSE_FAILURE_MESSAGE).session)
            raise

        today = _now_utc().date()
        leftover = list(session.saved_item_ids)
        saved: List[str] = []
        try:
            while leftover:
                await self.compliance.delete_item(uid, business_id, leftover[0])
                leftover.pop(0)
            for draft in drafts:
                saved.append(await self.compliance.add_item(uid, business_id, draft.to_create(today)))
            await self.profiles.update_profile(uid, ProfileUpdate(has_completed_onboarding=True))
            if session.package_id:
                await self.profiles.select_plan(uid, session.package_id)
        except Exception as exc:
            logger.exception("Failed to finalize onboarding for user %s", uid)
            failed = machine.record_completion_failed(
                session, str(exc), FINALIZE_FAILURE_MESSAGE, saved_item_ids=leftover + saved
            )
            self._save(failed.session)
            raise

        logger.info("Saved %d compliance items for business %s", len(drafts), business_id)
        return machine.record_completion_saved(session, self.settle_delay)


onboarding_service = OnboardingService()
