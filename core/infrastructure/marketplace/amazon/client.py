"""Amazon SP-API gateway for the fee feeds (Finances and Reports)."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sp_api.api import Finances, Reports
from sp_api.auth.exceptions import AuthorizationError
from sp_api.base import (
    Marketplaces,
    SellingApiException,
    SellingApiForbiddenException,
    SellingApiRequestThrottledException,
    SellingApiServerException,
    SellingApiTemporarilyUnavailableException,
)

from core.application.interfaces import IFeeFeedGateway
from core.domain.exceptions import (
    FeedAuthenticationError,
    FeedRequestError,
    TransientFeedError,
)
from core.settings.modules.amazon_settings import AmazonSettings

logger = logging.getLogger(__name__)

SETTLEMENT_REPORT_TYPE = "GET_V2_SETTLEMENT_REPORT_DATA_FLAT_FILE_V2"
LEDGER_PAGE_SIZE = 100
REPORTS_PAGE_SIZE = 100


def format_amazon_datetime(value: datetime) -> str:
    """Format a datetime as the ISO8601 Z form SP-API expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def translate_sp_api_error(exc: Exception) -> Exception:
    """
    Map SP-API client exceptions onto the domain feed errors.

    Args:
        exc: Exception raised by python-amazon-sp-api

    Returns:
        FeedAuthenticationError, TransientFeedError or FeedRequestError
    """
    if isinstance(exc, (AuthorizationError, SellingApiForbiddenException)):
        return FeedAuthenticationError(f"SP-API rejected credentials: {exc}")

    if isinstance(exc, (
        SellingApiRequestThrottledException,
        SellingApiServerException,
        SellingApiTemporarilyUnavailableException,
    )):
        return TransientFeedError(str(exc), status_code=getattr(exc, "code", None))

    code = getattr(exc, "code", None)
    if isinstance(code, int):
        if code == 429 or 500 <= code < 600:
            return TransientFeedError(str(exc), status_code=code)
        if code in (401, 403):
            return FeedAuthenticationError(f"SP-API rejected credentials: {exc}")
    return FeedRequestError(str(exc), status_code=code if isinstance(code, int) else None)


class SpApiFeeGateway(IFeeFeedGateway):
    """
    Blocking SP-API client for one seller account.

    One instance per sync run: it is built from the refresh token the
    credential store resolved for that run.
    """

    def __init__(self, refresh_token: str, settings: AmazonSettings) -> None:
        """
        Initialize gateway.

        Args:
            refresh_token: LWA refresh token of the seller
            settings: Application-level SP-API credentials
        """
        self._settings = settings
        self._marketplace = getattr(Marketplaces, settings.marketplace)
        self._credentials = settings.sp_api_credentials(refresh_token)
        self._finances: Optional[Finances] = None
        self._reports: Optional[Reports] = None

    @property
    def finances_api(self) -> Finances:
        if self._finances is None:
            self._finances = Finances(marketplace=self._marketplace, credentials=self._credentials)
        return self._finances

    @property
    def reports_api(self) -> Reports:
        if self._reports is None:
            self._reports = Reports(marketplace=self._marketplace, credentials=self._credentials)
        return self._reports

    def list_financial_events_page(
        self,
        posted_after: datetime,
        posted_before: datetime,
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            if next_token:
                response = self.finances_api.list_financial_events(NextToken=next_token)
            else:
                response = self.finances_api.list_financial_events(
                    PostedAfter=format_amazon_datetime(posted_after),
                    PostedBefore=format_amazon_datetime(posted_before),
                    MaxResultsPerPage=LEDGER_PAGE_SIZE,
                )
        except (SellingApiException, AuthorizationError) as e:
            raise translate_sp_api_error(e) from e

        return response.payload or {}

    def list_settlement_reports_page(
        self,
        created_since: datetime,
        marketplace_ids: List[str],
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            if next_token:
                response = self.reports_api.get_reports(nextToken=next_token)
            else:
                response = self.reports_api.get_reports(
                    reportTypes=[SETTLEMENT_REPORT_TYPE],
                    processingStatuses=["DONE"],
                    marketplaceIds=marketplace_ids or self._settings.marketplace_ids,
                    createdSince=format_amazon_datetime(created_since),
                    pageSize=REPORTS_PAGE_SIZE,
                )
        except (SellingApiException, AuthorizationError) as e:
            raise translate_sp_api_error(e) from e

        payload = response.payload
        # get_reports returns the list itself as payload on some client versions
        if isinstance(payload, list):
            return {"reports": payload, "nextToken": getattr(response, "next_token", None)}
        return payload or {}

    def download_report_document(self, document_id: str) -> str:
        try:
            response = self.reports_api.get_report_document(document_id, download=True)
        except (SellingApiException, AuthorizationError) as e:
            raise translate_sp_api_error(e) from e

        document = (response.payload or {}).get("document", "")
        if isinstance(document, bytes):
            document = document.decode("utf-8", errors="replace")
        logger.info(f"[SETTLEMENT] Downloaded report document {document_id} ({len(document)} chars)")
        return document


class SpApiGatewayFactory:
    """Builds a gateway per run from a resolved refresh token."""

    def __init__(self, settings: AmazonSettings) -> None:
        self._settings = settings

    def __call__(self, refresh_token: str) -> IFeeFeedGateway:
        return SpApiFeeGateway(refresh_token=refresh_token, settings=self._settings)
