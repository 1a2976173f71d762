"""
Order Sources

Interfaces to the collaborators that supply raw order payloads and customer
order history, plus the implementations used for file-based recompute runs
and tests.
"""

from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

import polars as pl
import structlog

from ..transformation.models import HistoricalOrder, Order
from ..transformation.timezones import ReportingPeriod

logger = structlog.get_logger(__name__)


class OrderFetcher(Protocol):
    """Supplies raw order payloads for a tenant and period"""

    async def fetch_orders(self, tenant_id: str, period: ReportingPeriod) -> List[Dict[str, Any]]:
        ...


class LifetimeHistoryProvider(Protocol):
    """Supplies every order a customer ever placed"""

    async def history_for(
        self,
        tenant_id: str,
        customer_ids: Sequence[str],
    ) -> Dict[str, List[HistoricalOrder]]:
        ...


class InMemoryHistoryProvider:
    """
    History provider backed by a dict of customer id -> orders.

    Example:
        provider = InMemoryHistoryProvider.from_orders(all_orders)
        history = await provider.history_for("tenant-1", ["c1", "c2"])
    """

    def __init__(self, history: Optional[Dict[str, List[HistoricalOrder]]] = None):
        self._history: Dict[str, List[HistoricalOrder]] = {
            customer_id: list(orders) for customer_id, orders in (history or {}).items()
        }

    @classmethod
    def from_orders(cls, orders: Iterable[Order]) -> "InMemoryHistoryProvider":
        """Build history from canonical orders; guests and undated orders are skipped"""
        history: Dict[str, List[HistoricalOrder]] = defaultdict(list)
        for order in orders:
            if order.customer is None or order.created_at is None:
                continue
            history[order.customer.customer_id].append(
                HistoricalOrder(order_id=order.order_id, created_at=order.created_at)
            )
        return cls(dict(history))

    async def history_for(
        self,
        tenant_id: str,
        customer_ids: Sequence[str],
    ) -> Dict[str, List[HistoricalOrder]]:
        return {
            customer_id: list(self._history[customer_id])
            for customer_id in customer_ids
            if customer_id in self._history
        }


class JsonlOrderSource:
    """
    Order fetcher reading a JSON Lines export of raw order payloads.

    Every payload in the file is returned; the transformer's reporting window
    decides which days end up in the output.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read_payloads(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            raise FileNotFoundError(f"Order export not found: {self.path}")
        if self.path.stat().st_size == 0:
            return []

        df = pl.read_ndjson(self.path, infer_schema_length=None)
        payloads = df.to_dicts()
        logger.info("Loaded order payloads", file=str(self.path), payloads=len(payloads))
        return payloads

    async def fetch_orders(self, tenant_id: str, period: ReportingPeriod) -> List[Dict[str, Any]]:
        return self.read_payloads()
