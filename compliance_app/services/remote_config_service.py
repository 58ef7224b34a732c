"""
Remote Config Service
Feature flags fetched once per process from {namespace}/config/remote.

The flag document looks like {"parameters": {"gemini_api_key": "...", ...}}.
In-app defaults (e.g. GEMINI_API_KEY from the environment) fill in keys the
document does not define.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from compliance_app.config import _now_utc, settings
from compliance_app.document_store import DocumentStore, document_store
from compliance_app.paths import remote_config_path

logger = logging.getLogger(__name__)

GEMINI_API_KEY_FLAG = "gemini_api_key"

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


class RemoteConfigService:
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        minimum_fetch_interval: Optional[timedelta] = None,
        defaults: Optional[Dict[str, Any]] = None,
        namespace: Optional[str] = None,
    ) -> None:
        self.store = store or document_store
        self.minimum_fetch_interval = (
            minimum_fetch_interval
            if minimum_fetch_interval is not None
            else settings.remote_config_min_fetch_interval
        )
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self.namespace = namespace
        self._active: Dict[str, Any] = {}
        self._last_fetch: Optional[datetime] = None
        self._init_task: Optional["asyncio.Task[bool]"] = None

    @property
    def is_initialized(self) -> bool:
        return self._last_fetch is not None

    async def initialize(self) -> None:
        """
        Fetch and activate once. Concurrent callers share the in-flight fetch;
        later calls are no-ops. A failed fetch may be retried by calling again.
        """
        if self.is_initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self.fetch_and_activate(force=True))
        task = self._init_task
        activated = await asyncio.shield(task)
        if not activated and self._init_task is task:
            self._init_task = None

    async def fetch_and_activate(self, force: bool = False) -> bool:
        """Fetch the flag document unless the last fetch is within the minimum interval."""
        now = _now_utc()
        if not force and self._last_fetch is not None and now - self._last_fetch < self.minimum_fetch_interval:
            logger.debug("Remote config fetched %s ago; skipping", now - self._last_fetch)
            return True
        try:
            logger.info("Fetching and activating remote config...")
            document = await self.store.get(remote_config_path(self.namespace))
        except Exception:
            logger.exception("Error fetching and activating remote config")
            return False
        parameters = (document or {}).get("parameters") or {}
        if not isinstance(parameters, dict):
            logger.error("Remote config parameters are not a mapping: %r", type(parameters))
            parameters = {}
        self._active = dict(parameters)
        self._last_fetch = now
        logger.info("Remote config activated (%d parameters)", len(self._active))
        return True

    def _lookup(self, key: str, zero: Any) -> Optional[Any]:
        if not self.is_initialized:
            logger.warning("Remote config not initialized. Cannot get value for key: %s. Returning %r.", key, zero)
            return None
        if key in self._active:
            return self._active[key]
        if key in self.defaults:
            return self.defaults[key]
        logger.warning("Remote config key %s not found. Returning %r.", key, zero)
        return None

    def get_string(self, key: str) -> str:
        value = self._lookup(key, "")
        return "" if value is None else str(value)

    def get_boolean(self, key: str) -> bool:
        value = self._lookup(key, False)
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUTHY

    def get_number(self, key: str) -> float:
        value = self._lookup(key, 0)
        if value is None or isinstance(value, bool):
            return 0
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Remote config key %s is not numeric: %r", key, value)
            return 0


remote_config_service = RemoteConfigService(
    defaults={GEMINI_API_KEY_FLAG: settings.gemini_api_key} if settings.gemini_api_key else None,
)
