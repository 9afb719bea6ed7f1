"""Read-only dashboard metrics derived from the catalog and workflow log.

Nothing in this module writes to the workbook.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from . import core_logic, data_manager, log
from .constants import TransactionStatus, TransactionType

TREND_UP = "up"
TREND_DOWN = "down"
TREND_NEUTRAL = "neutral"

NO_PREVIOUS_DATA = "No previous data"


@dataclass(frozen=True)
class TrendResult:
    """Period-over-period change of completed workflow counts."""

    direction: str
    recent_count: int
    previous_count: int
    change_percent: Optional[float]
    label: str


@dataclass(frozen=True)
class DashboardSummary:
    """Figures shown on the dashboard cards."""

    total_products: int
    inbound_count: int
    outbound_count: int
    low_stock_count: int
    inbound_trend: TrendResult
    outbound_trend: TrendResult


def _completed_of_type(
    transactions: Iterable[data_manager.TransactionRow], transaction_type: TransactionType
) -> list[data_manager.TransactionRow]:
    return [
        transaction
        for transaction in transactions
        if transaction.transaction_type == transaction_type.value
        and transaction.status == TransactionStatus.COMPLETED.value
    ]


def calculate_trend(
    transactions: Iterable[data_manager.TransactionRow],
    transaction_type: Union[TransactionType, str],
    now: datetime,
    *,
    lookback_days: int = 30,
    window_days: int = 15,
) -> TrendResult:
    """Compare completed workflows of one type across two adjacent windows.

    The recent window covers workflows created in the last ``window_days``;
    the previous window covers ``lookback_days`` ago up to the start of the
    recent one. With no previous activity the trend is neutral.
    A naive ``now`` is read as UTC.
    """

    kind = TransactionType(transaction_type)
    now = core_logic.resolve_timestamp(now)
    recent_start = now - timedelta(days=window_days)
    previous_start = now - timedelta(days=lookback_days)

    completed = _completed_of_type(transactions, kind)
    recent = sum(1 for t in completed if recent_start <= t.created_at <= now)
    previous = sum(1 for t in completed if previous_start <= t.created_at < recent_start)

    if previous == 0:
        return TrendResult(TREND_NEUTRAL, recent, previous, None, NO_PREVIOUS_DATA)

    change = (recent - previous) / previous * 100
    if change > 0:
        direction = TREND_UP
    elif change < 0:
        direction = TREND_DOWN
    else:
        direction = TREND_NEUTRAL
    return TrendResult(direction, recent, previous, change, f"{abs(change):.1f}% from last period")


def count_completed_since(
    transactions: Iterable[data_manager.TransactionRow],
    transaction_type: Union[TransactionType, str],
    since: datetime,
) -> int:
    """Count completed workflows of a type created at or after ``since``."""

    kind = TransactionType(transaction_type)
    since = core_logic.resolve_timestamp(since)
    return sum(1 for t in _completed_of_type(transactions, kind) if t.created_at >= since)


def build_dashboard_summary(
    context: core_logic.RuntimeContext, *, now: Optional[datetime] = None
) -> DashboardSummary:
    """Assemble the dashboard cards using the configured windows."""

    moment = core_logic.resolve_timestamp(now)
    lookback = context.settings.lookback_days
    window = context.settings.trend_window_days
    products = core_logic.list_products(context)
    transactions = core_logic.list_transactions(context)
    since = moment - timedelta(days=lookback)

    summary = DashboardSummary(
        total_products=len(products),
        inbound_count=count_completed_since(transactions, TransactionType.INBOUND, since),
        outbound_count=count_completed_since(transactions, TransactionType.OUTBOUND, since),
        low_stock_count=sum(1 for product in products if product.is_low_stock),
        inbound_trend=calculate_trend(
            transactions, TransactionType.INBOUND, moment, lookback_days=lookback, window_days=window
        ),
        outbound_trend=calculate_trend(
            transactions, TransactionType.OUTBOUND, moment, lookback_days=lookback, window_days=window
        ),
    )
    log.debug("Built dashboard summary: %s", summary)
    return summary
