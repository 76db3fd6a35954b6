"""
Financial events (ledger) adapter.

Pages through listFinancialEvents for a posted-date window and
flattens every event's charge, fee and promotion sub-lists into
RawFeeRecords. Payload keys arrive PascalCase from the API and
camelCase from some SDK versions; both are accepted.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Optional, Tuple

from core.application.interfaces import IFeeFeedGateway
from core.domain.exceptions import FeedAuthenticationError, FeeSyncError
from core.domain.value_objects import FeeSource, RawFeeRecord
from orchestration.controller import FeedController

logger = logging.getLogger(__name__)


# Event list name -> transaction type used for classification
EVENT_LISTS: Dict[str, str] = {
    "ShipmentEventList": "Order",
    "RefundEventList": "Refund",
    "GuaranteeClaimEventList": "GuaranteeClaim",
    "ChargebackEventList": "Chargeback",
    "ServiceFeeEventList": "ServiceFee",
    "AdjustmentEventList": "Adjustment",
    "RemovalShipmentEventList": "RemovalShipment",
}

# Sub-list name -> (amount type, key holding the description, key holding the amount)
SUB_LISTS: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    "ItemChargeList": ("ItemPrice", "ChargeType", ("ChargeAmount",)),
    "ItemChargeAdjustmentList": ("ChargeAdjustment", "ChargeType", ("ChargeAmount",)),
    "ItemFeeList": ("ItemFees", "FeeType", ("FeeAmount",)),
    "ItemFeeAdjustmentList": ("ItemFees", "FeeType", ("FeeAmount",)),
    "PromotionList": ("Promotion", "PromotionType", ("PromotionAmount",)),
    "PromotionAdjustmentList": ("Promotion", "PromotionType", ("PromotionAmount",)),
    "ShipmentFeeList": ("ShipmentFees", "FeeType", ("FeeAmount",)),
    "ShipmentFeeAdjustmentList": ("ShipmentFees", "FeeType", ("FeeAmount",)),
    "OrderFeeList": ("OrderFees", "FeeType", ("FeeAmount",)),
    "OrderFeeAdjustmentList": ("OrderFees", "FeeType", ("FeeAmount",)),
    "FeeList": ("Fee", "FeeType", ("FeeAmount",)),
    "AdjustmentItemList": ("Adjustment", "AdjustmentType", ("TotalAmount", "PerUnitAmount")),
}

# Item-level containers inside an event
ITEM_LISTS = ("ShipmentItemList", "ShipmentItemAdjustmentList", "RemovalShipmentItemList")


def _camel(key: str) -> str:
    return key[:1].lower() + key[1:]


def field_value(data: Dict[str, Any], key: str) -> Any:
    """Read `PostedDate` or `postedDate`, whichever the payload carries."""
    if key in data:
        return data[key]
    return data.get(_camel(key))


def parse_currency_amount(value: Any) -> Tuple[Optional[Decimal], Optional[str]]:
    """
    Read a {CurrencyAmount|Amount, CurrencyCode} object.

    Returns:
        (amount, currency); amount is None when absent or not a number
    """
    if value is None:
        return None, None
    if not isinstance(value, dict):
        raw, currency = value, None
    else:
        raw = field_value(value, "CurrencyAmount")
        if raw is None:
            raw = field_value(value, "Amount")
        currency = field_value(value, "CurrencyCode")
    if raw is None:
        return None, currency
    try:
        return Decimal(str(raw)), currency
    except InvalidOperation:
        return None, currency


def parse_event_date(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def compute_safe_before(
    requested: Optional[datetime], now: datetime, margin_minutes: int
) -> datetime:
    """
    Clamp PostedBefore so it trails now by the safety margin.

    The API rejects PostedBefore values closer than two minutes to the
    present.
    """
    latest = now - timedelta(minutes=margin_minutes)
    if requested is None or requested > latest:
        return latest
    return requested


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_month_start(moment: datetime) -> datetime:
    start = month_start(moment)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def _event_identity(event: Dict[str, Any]) -> str:
    for key in ("AmazonOrderId", "FinancialEventGroupId", "SellerOrderId", "AdjustmentType", "FeeReason"):
        value = field_value(event, key)
        if value:
            return str(value)
    return "-"


def _iter_entries(container: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    for sub_list in SUB_LISTS:
        for entry in field_value(container, sub_list) or []:
            if isinstance(entry, dict):
                yield sub_list, entry


def flatten_event(
    list_name: str,
    event: Dict[str, Any],
    undated_at: Optional[datetime] = None,
    occurrences: Optional[Counter] = None,
) -> List[RawFeeRecord]:
    """
    Flatten one financial event into raw records.

    Service fee events carry no PostedDate. Such an event is dated by
    `undated_at` (the start of the window it was served in) and its
    batch id takes the window month plus its occurrence index, so two
    equal charges posted in the same month stay distinct.

    Args:
        list_name: Event list the event came from ("ShipmentEventList", ...)
        event: Event payload
        undated_at: Date given to events without a PostedDate
        occurrences: Per-run counter of undated batch keys

    Returns:
        One RawFeeRecord per charge/fee/promotion entry with an amount
    """
    transaction_type = EVENT_LISTS.get(list_name, list_name)
    order_id = field_value(event, "AmazonOrderId")
    posted_raw = field_value(event, "PostedDate")
    posted_at = parse_event_date(posted_raw)
    date_token = str(posted_raw or "")
    if posted_at is None and undated_at is not None:
        posted_at = undated_at
        date_token = undated_at.strftime("%Y-%m")

    batch_parts = [list_name, _event_identity(event), date_token]
    # service fees and adjustments share an identity per posting; tell them apart
    for key in ("FeeReason", "FeeDescription", "AdjustmentType"):
        value = field_value(event, key)
        if value and str(value) not in batch_parts:
            batch_parts.append(str(value))
    batch_id = ":".join(batch_parts)
    if not posted_raw and occurrences is not None:
        index = occurrences[batch_id]
        occurrences[batch_id] += 1
        batch_id = f"{batch_id}#{index}"

    records: List[RawFeeRecord] = []

    def emit(sub_list: str, entry: Dict[str, Any], item: Optional[Dict[str, Any]]) -> None:
        amount_type, description_key, amount_keys = SUB_LISTS[sub_list]
        amount, currency = None, None
        for amount_key in amount_keys:
            amount, currency = parse_currency_amount(field_value(entry, amount_key))
            if amount is not None:
                break
        if amount is None:
            return

        description = (
            field_value(entry, description_key)
            or field_value(entry, "AdjustmentType")
            or field_value(event, "FeeDescription")
            or field_value(event, "FeeReason")
            or field_value(event, "AdjustmentType")
            or ""
        )
        context = item or entry
        records.append(RawFeeRecord(
            source=FeeSource.FINANCIAL_EVENTS_API,
            transaction_type=transaction_type,
            amount_type=amount_type,
            fee_type_text=str(description),
            signed_amount=amount,
            posted_at=posted_at,
            batch_id=batch_id,
            currency=currency or "USD",
            order_id=order_id or field_value(context, "AmazonOrderId"),
            order_item_id=(
                field_value(context, "OrderItemId")
                or field_value(context, "OrderAdjustmentItemId")
            ),
            sku=field_value(context, "SellerSKU") or field_value(event, "SellerSKU"),
            asin=field_value(context, "ASIN") or field_value(event, "ASIN"),
        ))

    for sub_list, entry in _iter_entries(event):
        emit(sub_list, entry, None)

    for item_list in ITEM_LISTS:
        for item in field_value(event, item_list) or []:
            if not isinstance(item, dict):
                continue
            for sub_list, entry in _iter_entries(item):
                emit(sub_list, entry, item)
            # removal shipment items carry their fee inline
            if item_list == "RemovalShipmentItemList":
                amount, currency = parse_currency_amount(field_value(item, "FeeAmount"))
                if amount is not None:
                    records.append(RawFeeRecord(
                        source=FeeSource.FINANCIAL_EVENTS_API,
                        transaction_type=transaction_type,
                        amount_type="Fee",
                        fee_type_text="RemovalFee",
                        signed_amount=amount,
                        posted_at=posted_at,
                        batch_id=batch_id,
                        currency=currency or "USD",
                        sku=field_value(item, "SellerSKU"),
                    ))

    return records


def flatten_financial_events(
    payload: Dict[str, Any],
    undated_at: Optional[datetime] = None,
    occurrences: Optional[Counter] = None,
) -> List[RawFeeRecord]:
    """
    Flatten a listFinancialEvents page.

    Args:
        payload: Page payload ({"FinancialEvents": {...}, "NextToken": ...})
            or the FinancialEvents object itself
        undated_at: Date given to events without a PostedDate
        occurrences: Per-run counter of undated batch keys

    Returns:
        RawFeeRecords of every known event list
    """
    events = field_value(payload, "FinancialEvents")
    if events is None:
        events = payload

    records: List[RawFeeRecord] = []
    for list_name in EVENT_LISTS:
        for event in field_value(events, list_name) or []:
            if isinstance(event, dict):
                records.extend(flatten_event(list_name, event, undated_at, occurrences))
    return records


@dataclass
class LedgerWindowResult:
    """Records of one posted-date window."""
    after: datetime
    before: datetime
    records: List[RawFeeRecord] = field(default_factory=list)
    pages: int = 0
    pages_failed: int = 0


class LedgerEventAdapter:
    """Reads financial event windows through the feed controller."""

    def __init__(self, gateway: IFeeFeedGateway, controller: FeedController, page_cap: int = 200):
        self._gateway = gateway
        self._controller = controller
        self._page_cap = page_cap

    async def fetch_window(
        self, after: datetime, before: datetime, occurrences: Optional[Counter] = None
    ) -> LedgerWindowResult:
        """
        Fetch and flatten every event posted in [after, before).

        Events without a PostedDate are dated at `after`. Pass the same
        `occurrences` counter for every window of a run so repeated
        undated charges keep distinct batch ids.

        A page that still fails after retries ends the window's
        pagination; pages already read are kept.

        Raises:
            FeedAuthenticationError: If credentials are rejected
        """
        result = LedgerWindowResult(after=after, before=before)
        if occurrences is None:
            occurrences = Counter()
        try:
            async for payload in self._controller.paginate(
                "ledger.list_financial_events",
                lambda token: self._gateway.list_financial_events_page(after, before, token),
                page_cap=self._page_cap,
            ):
                result.pages += 1
                result.records.extend(flatten_financial_events(payload, after, occurrences))
        except FeedAuthenticationError:
            raise
        except FeeSyncError as exc:
            result.pages_failed += 1
            logger.error(
                f"❌ [LEDGER] Window {after.isoformat()} - {before.isoformat()} "
                f"stopped after {result.pages} page(s): {exc}"
            )

        logger.info(
            f"[LEDGER] Window {after.date()} - {before.date()}: pages={result.pages}, "
            f"records={len(result.records)}"
        )
        return result
