"""
Base class for ledger-mutating operations.

Subclasses share the database handle, the point ledger and the way
refused operations are logged.
"""

from scoreboard.database.database import Database
from scoreboard.operations.point_ledger import PointLedger
from scoreboard.utils.logger import setup_logger
from scoreboard.utils.results import OperationResult


class BaseOperations:
    """Base class for operations that write point entries through the ledger."""

    def __init__(self, db: Database, ledger: PointLedger = None):
        """
        Args:
            db: Database instance for persistence
            ledger: Point ledger to write through (one is built from db if omitted)
        """
        self.db = db
        self.ledger = ledger or PointLedger(db)
        self.logger = setup_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def _refuse(self, result: OperationResult) -> OperationResult:
        """Log a refused operation and hand the failed result back"""
        self.logger.warning(f"Refused ({result.error_kind.value}): {result.error_message}")
        return result
