"""
Raw fee records to canonical fee events.

Every feed adapter hands its RawFeeRecords to FeeNormalizer, which
drops revenue lines and zero amounts, classifies the rest through the
ordered rule table and fixes the sign by category.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from core.domain.value_objects import CanonicalFeeEvent, MatchKey, RawFeeRecord
from core.domain.value_objects.financial import FeeCategory
from .fee_config import FEE_RULES_VERSION, classify_fee_text, is_revenue_component

logger = logging.getLogger(__name__)


@dataclass
class NormalizedBatch:
    """Result of normalizing a batch of raw records."""
    events: List[CanonicalFeeEvent] = field(default_factory=list)
    non_fee_skipped: int = 0
    zero_skipped: int = 0


class FeeNormalizer:
    """
    Maps raw feed records to canonical fee events.

    Sign rule: cost categories hold positive magnitudes, credit
    categories negative ones, whatever sign the feed used.
    """

    rules_version = FEE_RULES_VERSION

    @staticmethod
    def signed_for_category(category: FeeCategory, amount: Decimal) -> Decimal:
        magnitude = abs(amount)
        return -magnitude if category.is_credit else magnitude

    def normalize(self, user_id: str, record: RawFeeRecord) -> Optional[CanonicalFeeEvent]:
        """
        Normalize one raw record.

        Args:
            user_id: Owner of the data
            record: Raw record from any feed

        Returns:
            CanonicalFeeEvent, or None for revenue lines and zero amounts
        """
        if is_revenue_component(record.transaction_type, record.amount_type, record.fee_type_text):
            return None
        if record.signed_amount == 0:
            return None

        category = classify_fee_text(
            record.transaction_type, record.amount_type, record.fee_type_text, record.signed_amount
        )
        if category == FeeCategory.OTHER:
            logger.debug(
                f"[NORMALIZER] Unclassified fee text: type={record.transaction_type!r}, "
                f"amount_type={record.amount_type!r}, description={record.fee_type_text!r}"
            )

        return CanonicalFeeEvent(
            user_id=user_id,
            category=category,
            amount=self.signed_for_category(category, record.signed_amount),
            source=record.source,
            batch_id=record.batch_id,
            description=record.fee_type_text,
            order_id=record.order_id or None,
            candidate_keys=MatchKey.candidates(
                record.order_id,
                order_item_id=record.order_item_id,
                sku=record.sku,
                asin=record.asin,
            ),
            currency=record.currency,
            posted_at=record.posted_at,
        )

    def normalize_batch(self, user_id: str, records: Iterable[RawFeeRecord]) -> NormalizedBatch:
        """Normalize many records, counting what was dropped."""
        batch = NormalizedBatch()
        for record in records:
            if is_revenue_component(record.transaction_type, record.amount_type, record.fee_type_text):
                batch.non_fee_skipped += 1
                continue
            event = self.normalize(user_id, record)
            if event is None:
                batch.zero_skipped += 1
                continue
            batch.events.append(event)

        logger.info(
            f"[NORMALIZER] Normalized {len(batch.events)} fee event(s) "
            f"(rules v{self.rules_version}, non-fee={batch.non_fee_skipped}, "
            f"zero={batch.zero_skipped})"
        )
        return batch
