"""
Application wiring and FastAPI dependencies
"""

from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from ..accounts import StorageAccountLedger
from ..audit import AuditTrail
from ..config import CreditEngineConfig, get_config
from ..credits import CreditService, utc_now
from ..currency import Currency
from ..ledger import CreditLedger
from ..logging_config import get_logger
from ..settlement import SettlementScheduler
from ..storage import StorageInterface, create_storage


logger = get_logger("credit_engine.api")


class CreditSystem:
    """Credit engine with all components initialized"""

    def __init__(
        self,
        config: Optional[CreditEngineConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.credit_ledger = CreditLedger(self.storage)
        self.account_ledger = StorageAccountLedger(self.storage)
        self.credit_service = CreditService(
            self.credit_ledger,
            self.account_ledger,
            self.audit_trail,
            penalty_rate=self.config.penalty_rate,
            default_currency=Currency.from_code(self.config.default_currency),
            clock=clock
        )
        self.scheduler = SettlementScheduler(
            self.credit_ledger,
            self.credit_service,
            self.audit_trail,
            interval_seconds=self.config.settlement_interval_seconds,
            late_grace_days=self.config.late_grace_days,
            clock=clock
        )

    def start(self) -> None:
        """Start background work enabled by configuration"""
        if self.config.enable_settlement_scheduler:
            self.scheduler.start()
        else:
            logger.info("Settlement scheduler disabled by configuration")

    def shutdown(self) -> None:
        """Stop the scheduler, waiting out a sweep in progress, then release storage"""
        self.scheduler.stop(wait=True)
        self.storage.close()


def get_credit_system(request: Request) -> CreditSystem:
    return request.app.state.credit_system
