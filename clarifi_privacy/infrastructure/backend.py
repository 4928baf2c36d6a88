"""
Financial data backend clients.

The export service reads the signed-in session, transactions and per-category
transaction rows through ``FinancialBackend``. ``HttpFinancialBackend`` talks
to a PostgREST-style REST API.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import Settings, get_settings
from ..models.auth import AuthSession
from ..utils.exceptions import ExternalServiceError

logger = structlog.get_logger()


class FinancialBackend(ABC):
    """Read-only access to the user's financial data."""

    @abstractmethod
    async def get_session(self) -> Optional[AuthSession]:
        """Return the signed-in user, or None when anonymous."""

    @abstractmethod
    async def fetch_transactions(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Return transaction rows dated within [start_date, end_date], newest first."""

    @abstractmethod
    async def fetch_category_transactions(self) -> List[Dict[str, Any]]:
        """Return ``category_id``/``category_name``/``amount`` rows for categorized transactions."""

    async def aclose(self) -> None:
        """Release network resources."""


class HttpFinancialBackend(FinancialBackend):
    """PostgREST client for the transactions table."""

    TRANSACTIONS_PATH = "/rest/v1/transactions"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.settings = settings or get_settings()
        if not self.settings.backend_url and client is None:
            raise ValueError("backend_url must be configured for HttpFinancialBackend")

        self._session: Optional[AuthSession] = None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.backend_url,
            timeout=self.settings.backend_timeout_seconds
        )

    def set_session(self, session: AuthSession) -> None:
        self._session = session
        logger.info("Backend session set", user_id=session.user_id)

    def clear_session(self) -> None:
        self._session = None

    async def get_session(self) -> Optional[AuthSession]:
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.backend_api_key:
            headers["apikey"] = self.settings.backend_api_key
        if self._session and self._session.access_token:
            headers["Authorization"] = f"Bearer {self._session.access_token}"
        return headers

    async def _get_rows(self, params: List[tuple]) -> List[Dict[str, Any]]:
        try:
            response = await self.client.get(self.TRANSACTIONS_PATH, params=params, headers=self._headers())
            response.raise_for_status()
            rows = response.json()
        except httpx.TimeoutException:
            logger.warning("Backend request timed out", path=self.TRANSACTIONS_PATH)
            raise ExternalServiceError("Backend request timed out", service_name="financial-backend")
        except httpx.HTTPError as e:
            logger.error("Backend request failed", path=self.TRANSACTIONS_PATH, error=str(e))
            raise ExternalServiceError(f"Backend request failed: {e}", service_name="financial-backend")
        except ValueError as e:
            logger.error("Backend returned invalid JSON", path=self.TRANSACTIONS_PATH, error=str(e))
            raise ExternalServiceError("Backend returned invalid JSON", service_name="financial-backend")

        if not isinstance(rows, list):
            raise ExternalServiceError("Unexpected backend response", service_name="financial-backend")
        return rows

    async def fetch_transactions(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        return await self._get_rows([
            ("select", "*"),
            ("date", f"gte.{start_date}"),
            ("date", f"lte.{end_date}"),
            ("order", "date.desc"),
        ])

    async def fetch_category_transactions(self) -> List[Dict[str, Any]]:
        return await self._get_rows([
            ("select", "category_id,category_name,amount"),
            ("category_id", "not.is.null"),
        ])

    async def aclose(self) -> None:
        await self.client.aclose()
