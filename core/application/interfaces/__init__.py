"""Application layer interfaces."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.domain.entities import OrderLineItem


class IFeeFeedGateway(ABC):
    """
    Interface for the marketplace feeds the engine reads.

    Methods are blocking single-request calls; pagination, pacing and
    retries belong to the feed controller. Implementations raise the
    domain feed errors (FeedAuthenticationError, TransientFeedError,
    FeedRequestError).
    """

    @abstractmethod
    def list_financial_events_page(
        self,
        posted_after: datetime,
        posted_before: datetime,
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one page of the financial events ledger.

        Args:
            posted_after: Inclusive window start
            posted_before: Exclusive window end (already clamped by the caller)
            next_token: Continuation token of the previous page

        Returns:
            Payload dict with "FinancialEvents" and optional "NextToken"
        """
        pass

    @abstractmethod
    def list_settlement_reports_page(
        self,
        created_since: datetime,
        marketplace_ids: List[str],
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one page of available settlement documents.

        Returns:
            Payload dict with "reports" and optional "nextToken"
        """
        pass

    @abstractmethod
    def download_report_document(self, document_id: str) -> str:
        """
        Download a report document as text.

        Args:
            document_id: Report document id

        Returns:
            Decoded document body
        """
        pass


class ICredentialStore(ABC):
    """Resolves an opaque credential reference to a marketplace refresh token."""

    @abstractmethod
    async def get_refresh_token(self, user_id: str, credential_ref: str) -> str:
        """
        Resolve a credential reference.

        Raises:
            FeedAuthenticationError: If the reference is unknown
        """
        pass


class ILineItemStore(ABC):
    """Read access to the external order/line-item store."""

    @abstractmethod
    async def get_line_items(
        self, user_id: str, order_ids: Iterable[str]
    ) -> Dict[str, List[OrderLineItem]]:
        """
        Get the known line items of many orders at once.

        Returns:
            Mapping of order id to its line items (orders with none are absent)
        """
        pass
