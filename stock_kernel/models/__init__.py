"""ORM models for the stock kernel."""

from stock_kernel.models.batch import Batch
from stock_kernel.models.drift_report import DriftReportRecord
from stock_kernel.models.identifier_issue import IdentifierIssue
from stock_kernel.models.movement import Movement
from stock_kernel.models.serial_number import SerialNumber
from stock_kernel.models.stock_level import SITE_TOTAL, StockLevelCache
from stock_kernel.models.sequence_counter import SequenceCounter

__all__ = [
    "Batch",
    "DriftReportRecord",
    "IdentifierIssue",
    "Movement",
    "SITE_TOTAL",
    "SequenceCounter",
    "SerialNumber",
    "StockLevelCache",
]
