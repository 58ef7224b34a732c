"""
Dashboard Service
Composes the profile, business and compliance-item streams into one view.

Single active business: an account's dashboard shows its oldest business.
Multi-location accounts are not modelled yet.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from compliance_app.models.business import Business
from compliance_app.models.compliance_item import ComplianceCategory, ComplianceItem, ComplianceStatus
from compliance_app.models.users import AuthUser, UserProfile
from compliance_app.services.business_service import BusinessService, active_business, business_service
from compliance_app.services.compliance_service import ComplianceService, compliance_service
from compliance_app.services.identity_service import IdentityGateway
from compliance_app.services.profile_service import PACKAGES, ProfileService, profile_service
from compliance_app.streams import StateFeed, Subscription, subscribe

logger = logging.getLogger(__name__)

LOGIN_ROUTE = "/login"
ONBOARDING_ROUTE = "/onboarding"

LOAD_FAILED_MESSAGE = "Failed to load dashboard data. Please try again."
COMPLETE_FAILED_MESSAGE = "Failed to update compliance item status."
DELETE_FAILED_MESSAGE = "Failed to delete compliance item."


class DashboardView(BaseModel):
    user_id: Optional[str] = None
    profile: Optional[UserProfile] = None
    business: Optional[Business] = None
    items: List[ComplianceItem] = Field(default_factory=list)
    categorized: Dict[str, List[ComplianceItem]] = Field(default_factory=dict)
    by_status: Dict[str, List[ComplianceItem]] = Field(default_factory=dict)
    category_counts: Dict[str, int] = Field(default_factory=dict)
    packages: List[Dict[str, Any]] = Field(default_factory=list)
    redirect_to: Optional[str] = None
    error_message: Optional[str] = None
    is_loading: bool = True


def categorize(items: List[ComplianceItem]) -> Dict[str, List[ComplianceItem]]:
    """Every category gets a key, empty or not."""
    return {category.value: [i for i in items if i.category == category] for category in ComplianceCategory}


def group_by_status(items: List[ComplianceItem]) -> Dict[str, List[ComplianceItem]]:
    return {s.value: [i for i in items if i.status == s] for s in ComplianceStatus}


def category_counts(categorized: Dict[str, List[ComplianceItem]]) -> Dict[str, int]:
    return {category: len(items) for category, items in categorized.items()}


def build_view(
    user_id: Optional[str],
    profile: Optional[UserProfile],
    business: Optional[Business],
    items: List[ComplianceItem],
    **fields: Any,
) -> DashboardView:
    categorized = categorize(items)
    return DashboardView(
        user_id=user_id,
        profile=profile,
        business=business,
        items=items,
        categorized=categorized,
        by_status=group_by_status(items),
        category_counts=category_counts(categorized),
        packages=PACKAGES if profile is not None and not profile.is_subscribed else [],
        **fields,
    )


async def get_dashboard_summary(
    user_id: str,
    profiles: Optional[ProfileService] = None,
    businesses: Optional[BusinessService] = None,
    compliance: Optional[ComplianceService] = None,
) -> DashboardView:
    """Point-in-time dashboard view."""
    profiles = profiles or profile_service
    businesses = businesses or business_service
    compliance = compliance or compliance_service

    profile, owned = await asyncio.gather(
        profiles.get_profile(user_id),
        businesses.list_businesses(user_id),
    )
    if profile is not None and not profile.has_completed_onboarding:
        return build_view(user_id, profile, None, [], redirect_to=ONBOARDING_ROUTE, is_loading=False)

    business = active_business(owned)
    items: List[ComplianceItem] = []
    if business is not None:
        items = await compliance.list_items(user_id, business.id)
    return build_view(user_id, profile, business, items, is_loading=False)


class DashboardAggregator:
    """
    Live dashboard for one signed-in client. Every recomputed view is
    published on `views`; `close()` releases every subscription, including
    the compliance subscription opened from the business stream.
    """

    def __init__(
        self,
        gateway: IdentityGateway,
        profiles: Optional[ProfileService] = None,
        businesses: Optional[BusinessService] = None,
        compliance: Optional[ComplianceService] = None,
    ):
        self.gateway = gateway
        self.profiles = profiles or profile_service
        self.businesses = businesses or business_service
        self.compliance = compliance or compliance_service
        self.views: StateFeed[DashboardView] = StateFeed()

        self._root = Subscription()
        self._loads: Optional[Subscription] = None
        self._business_subscription: Optional[Subscription] = None
        self._compliance_subscription: Optional[Subscription] = None
        self._compliance_business_id: Optional[str] = None

        self.user_id: Optional[str] = None
        self.profile: Optional[UserProfile] = None
        self.business: Optional[Business] = None
        self.items: List[ComplianceItem] = []
        self.redirect_to: Optional[str] = None
        self.error_message: Optional[str] = None
        self.is_loading = True

    @property
    def closed(self) -> bool:
        return self._root.closed

    def start(self) -> None:
        self._root.add(subscribe(self.gateway.current_user_changes(), self._on_user, self._on_error))

    def close(self) -> None:
        self._root.cancel()
        self._loads = None
        self._business_subscription = None
        self._compliance_subscription = None
        self._compliance_business_id = None

    def view(self) -> DashboardView:
        return build_view(
            self.user_id,
            self.profile,
            self.business,
            self.items,
            redirect_to=self.redirect_to,
            error_message=self.error_message,
            is_loading=self.is_loading,
        )

    def _publish(self) -> None:
        self.views.set(self.view())

    # ------------------------------------------------------------------
    # Stream callbacks
    # ------------------------------------------------------------------

    def _on_user(self, user: Optional[AuthUser]) -> None:
        if not self.gateway.ready:
            return
        self._reset_loads()
        if user is None:
            self.user_id = None
            self.redirect_to = LOGIN_ROUTE
            self.is_loading = False
            self._publish()
            return

        self.user_id = user.id
        self.redirect_to = None
        self.error_message = None
        self.is_loading = True
        self._loads = self._root.add(Subscription())
        self._loads.add(subscribe(self.profiles.profile_stream(user.id), self._on_profile, self._on_error))
        self._publish()

    def _on_profile(self, profile: Optional[UserProfile]) -> None:
        self.profile = profile
        if profile is not None and not profile.has_completed_onboarding:
            self.redirect_to = ONBOARDING_ROUTE
            self._stop_business_loads()
            self.is_loading = False
        else:
            self.redirect_to = None
            self._ensure_business_loads()
        self._publish()

    def _on_businesses(self, businesses: List[Business]) -> None:
        business = active_business(businesses)
        self.business = business
        if business is None:
            self._replace_compliance(None)
            self.items = []
            self.is_loading = False
        elif not business.id or not self.user_id:
            logger.warning("User business found but has no id or the user id is missing.")
            self._replace_compliance(None)
            self.items = []
            self.is_loading = False
        elif business.id != self._compliance_business_id:
            self._replace_compliance(business.id)
        self._publish()

    def _on_items(self, items: List[ComplianceItem]) -> None:
        self.items = items
        self.is_loading = False
        self._publish()

    def _on_error(self, exc: Exception) -> None:
        logger.error("Error loading dashboard data: %s", exc)
        self.error_message = LOAD_FAILED_MESSAGE
        self.is_loading = False
        self._publish()

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def _reset_loads(self) -> None:
        if self._loads is not None:
            self._loads.cancel()
            self._root.remove(self._loads)
        self._loads = None
        self._business_subscription = None
        self._compliance_subscription = None
        self._compliance_business_id = None
        self.profile = None
        self.business = None
        self.items = []

    def _ensure_business_loads(self) -> None:
        if self._loads is None or self._business_subscription is not None:
            return
        self._business_subscription = self._loads.add(
            subscribe(self.businesses.businesses_for_user(self.user_id), self._on_businesses, self._on_error)
        )

    def _stop_business_loads(self) -> None:
        self._replace_compliance(None)
        if self._business_subscription is not None and self._loads is not None:
            self._business_subscription.cancel()
            self._loads.remove(self._business_subscription)
        self._business_subscription = None
        self.business = None
        self.items = []

    def _replace_compliance(self, business_id: Optional[str]) -> None:
        """Unsubscribe the current item stream and, given a business id, subscribe to its items."""
        if self._compliance_subscription is not None:
            self._compliance_subscription.cancel()
            if self._loads is not None:
                self._loads.remove(self._compliance_subscription)
        self._compliance_subscription = None
        self._compliance_business_id = business_id
        if business_id is None or self._loads is None:
            return
        self._compliance_subscription = self._loads.add(
            subscribe(self.compliance.items_for_business(self.user_id, business_id), self._on_items, self._on_error)
        )

    # ------------------------------------------------------------------
    # Item actions
    # ------------------------------------------------------------------

    async def mark_complete(self, item_id: str) -> bool:
        if not (self.business and self.business.id and self.user_id):
            logger.warning("Cannot mark item as complete: business id or user id is missing.")
            return False
        self.is_loading = True
        try:
            await self.compliance.mark_complete(self.user_id, self.business.id, item_id)
            return True
        except Exception:
            logger.exception("Error marking item %s as complete", item_id)
            self.error_message = COMPLETE_FAILED_MESSAGE
            return False
        finally:
            self.is_loading = False
            self._publish()

    async def delete_item(self, item_id: str) -> bool:
        if not (self.business and self.business.id and self.user_id):
            logger.warning("Cannot delete item: business id or user id is missing.")
            return False
        self.is_loading = True
        try:
            await self.compliance.delete_item(self.user_id, self.business.id, item_id)
            return True
        except Exception:
            logger.exception("Error deleting item %s", item_id)
            self.error_message = DELETE_FAILED_MESSAGE
            return False
        finally:
            self.is_loading = False
            self._publish()
