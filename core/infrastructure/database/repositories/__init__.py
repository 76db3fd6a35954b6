"""SQLAlchemy repositories."""

from .account_fee_repository import SQLAlchemyAccountFeeRepository
from .fee_breakdown_repository import SQLAlchemyFeeBreakdownRepository
from .line_item_repository import (
    PENDING_ORDER_STATUSES,
    SessionScopedLineItemStore,
    SQLAlchemyLineItemRepository,
)
from .sync_run_repository import (
    SQLAlchemyProcessedSettlementRepository,
    SQLAlchemySyncRunRepository,
)

__all__ = [
    "PENDING_ORDER_STATUSES",
    "SessionScopedLineItemStore",
    "SQLAlchemyAccountFeeRepository",
    "SQLAlchemyFeeBreakdownRepository",
    "SQLAlchemyLineItemRepository",
    "SQLAlchemyProcessedSettlementRepository",
    "SQLAlchemySyncRunRepository",
]
