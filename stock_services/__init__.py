"""
stock_services -- orchestration above the stock kernel.

Responsibility:
    The StockLedger facade, cache reconciliation, its polling scheduler and
    process startup.
    This is the only layer that reads stock_config; the kernel receives
    plain values.

Architecture position:
    Services -- orchestration over kernel services.

    Dependency direction:
        stock_services/ -> stock_kernel/, stock_config/  (allowed)
        stock_kernel/   -> stock_services/               (FORBIDDEN)
        stock_kernel/   -> stock_config/                 (FORBIDDEN)
"""

from stock_services.bootstrap import resolve_database_url, start_stock_ledger
from stock_services.reconciliation_service import DriftListener, ReconciliationService
from stock_services.scheduler import ReconciliationScheduler
from stock_services.stock_ledger import StockLedger

__all__ = [
    "DriftListener",
    "ReconciliationScheduler",
    "ReconciliationService",
    "StockLedger",
    "resolve_database_url",
    "start_stock_ledger",
]
