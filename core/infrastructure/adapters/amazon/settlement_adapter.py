"""
Settlement report (flat file V2) adapter.

Lists and downloads GET_V2_SETTLEMENT_REPORT_DATA_FLAT_FILE_V2 documents
and parses their tab-separated rows into RawFeeRecords.

Document layout:
- first data row is the settlement summary (totals, no transaction type)
- every other row is one amount of one transaction
- "Transfer" rows are payouts to the seller's bank, never fees
"""
import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from core.application.interfaces import IFeeFeedGateway
from core.domain.exceptions import MalformedDocumentError
from core.domain.value_objects import FeeSource, RawFeeRecord
from orchestration.controller import FeedController

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("settlement_id", "transaction_type", "amount")

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S %Z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d.%m.%Y %H:%M:%S %Z",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
    "%d/%m/%Y",
)


def normalize_header(name: str) -> str:
    """'settlement-id', 'Settlement ID' and 'settlement_id' all become 'settlement_id'."""
    return re.sub(r"[\s\-]+", "_", (name or "").strip().lower())


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse a report amount.

    Accepts "1234.56", "-1,234.56", "1234,56" and "1.234,56".

    Returns:
        Decimal, or None when the value is empty or not a number
    """
    if raw is None:
        return None
    value = raw.strip().replace(" ", "")
    if not value:
        return None

    if "," in value and "." in value:
        # whichever separator comes last is the decimal one
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        whole, _, fraction = value.rpartition(",")
        if len(fraction) in (1, 2) and value.count(",") == 1:
            value = f"{whole}.{fraction}"
        else:
            value = value.replace(",", "")

    try:
        return Decimal(value)
    except InvalidOperation:
        return None


def parse_posted_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse the report's posted date (ISO-8601, 'YYYY-MM-DD HH:MM:SS UTC' or 'DD.MM.YYYY')."""
    if not raw or not raw.strip():
        return None
    value = raw.strip()

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    logger.debug(f"[SETTLEMENT] Unparseable posted date: {raw!r}")
    return None


@dataclass(frozen=True)
class SettlementDocumentRef:
    """An available settlement report and its document."""
    report_id: str
    document_id: str
    created_time: Optional[datetime] = None
    data_start: Optional[datetime] = None
    data_end: Optional[datetime] = None


@dataclass
class SettlementParseResult:
    """Parsed settlement document."""
    settlement_id: Optional[str] = None
    records: List[RawFeeRecord] = field(default_factory=list)
    row_count: int = 0
    malformed: int = 0
    transfers_skipped: int = 0


def _clean(row: Dict[str, Optional[str]], key: str) -> Optional[str]:
    value = row.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_settlement_document(text: str) -> SettlementParseResult:
    """
    Parse a tab-separated settlement document.

    Args:
        text: Document body

    Returns:
        SettlementParseResult with one RawFeeRecord per amount row

    Raises:
        MalformedDocumentError: If the header lacks a required column
    """
    reader = csv.reader(io.StringIO(text.lstrip("﻿")), delimiter="\t")
    try:
        header = [normalize_header(name) for name in next(reader)]
    except StopIteration:
        raise MalformedDocumentError("Settlement document is empty")

    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise MalformedDocumentError(f"Settlement document lacks column(s): {', '.join(missing)}")

    result = SettlementParseResult()
    summary_currency: Optional[str] = None

    for values in reader:
        if not any(v.strip() for v in values):
            continue
        row = dict(zip(header, values))
        result.row_count += 1

        transaction_type = _clean(row, "transaction_type")
        amount_type = _clean(row, "amount_type")

        # settlement summary row: totals only
        if not transaction_type and not amount_type:
            result.settlement_id = result.settlement_id or _clean(row, "settlement_id")
            summary_currency = _clean(row, "currency") or summary_currency
            continue

        if transaction_type and transaction_type.lower() == "transfer":
            result.transfers_skipped += 1
            continue

        settlement_id = _clean(row, "settlement_id")
        amount = parse_amount(row.get("amount"))
        if not settlement_id or amount is None:
            result.malformed += 1
            logger.warning(
                f"[SETTLEMENT] Malformed row {result.row_count}: "
                f"settlement_id={settlement_id!r}, amount={row.get('amount')!r}"
            )
            continue

        result.settlement_id = result.settlement_id or settlement_id
        posted = _clean(row, "posted_date_time") or _clean(row, "posted_date")

        result.records.append(RawFeeRecord(
            source=FeeSource.SETTLEMENT_REPORT,
            transaction_type=transaction_type or "",
            amount_type=amount_type or "",
            fee_type_text=_clean(row, "amount_description") or "",
            signed_amount=amount,
            posted_at=parse_posted_date(posted),
            batch_id=settlement_id,
            currency=_clean(row, "currency") or summary_currency or "USD",
            order_id=_clean(row, "order_id") or _clean(row, "merchant_order_id"),
            order_item_id=_clean(row, "order_item_code") or _clean(row, "merchant_order_item_id"),
            sku=_clean(row, "sku"),
        ))

    logger.info(
        f"[SETTLEMENT] Parsed settlement {result.settlement_id}: rows={result.row_count}, "
        f"records={len(result.records)}, transfers={result.transfers_skipped}, "
        f"malformed={result.malformed}"
    )
    return result


def _parse_report_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


class SettlementReportAdapter:
    """Reads settlement documents through the feed controller."""

    def __init__(self, gateway: IFeeFeedGateway, controller: FeedController):
        self._gateway = gateway
        self._controller = controller

    async def list_documents(
        self, created_since: datetime, marketplace_ids: List[str]
    ) -> List[SettlementDocumentRef]:
        """
        List DONE settlement documents created since a date, oldest first.
        """
        refs: List[SettlementDocumentRef] = []
        async for payload in self._controller.paginate(
            "settlement.list_reports",
            lambda token: self._gateway.list_settlement_reports_page(
                created_since, marketplace_ids, token
            ),
        ):
            for report in payload.get("reports", []):
                document_id = report.get("reportDocumentId")
                if not document_id:
                    continue
                refs.append(SettlementDocumentRef(
                    report_id=str(report.get("reportId") or document_id),
                    document_id=document_id,
                    created_time=_parse_report_time(report.get("createdTime")),
                    data_start=_parse_report_time(report.get("dataStartTime")),
                    data_end=_parse_report_time(report.get("dataEndTime")),
                ))

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        refs.sort(key=lambda ref: (ref.created_time or epoch, ref.report_id))
        logger.info(f"[SETTLEMENT] Found {len(refs)} settlement document(s) since {created_since.date()}")
        return refs

    async def fetch_document(self, ref: SettlementDocumentRef) -> str:
        return await self._controller.call(
            "settlement.download", self._gateway.download_report_document, ref.document_id
        )
