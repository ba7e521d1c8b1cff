"""
Settlement Scheduler Module

Recurring background sweep that auto-debits due installments of active
credits from their funding accounts, applying the late penalty when the
balance falls short, and then flags overdue installments as late.

Each credit is settled in its own ledger transaction, so one credit's
failure never rolls back or blocks another credit in the same sweep.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from .audit import AuditTrail, AuditEventType
from .credits import CreditService, utc_now
from .errors import CreditEngineError, InsufficientFundsError
from .ledger import CreditLedger
from .logging_config import get_logger, log_action


class SchedulerState(Enum):
    """Scheduler lifecycle states"""
    IDLE = "idle"          # Waiting for the next tick
    RUNNING = "running"    # Sweep in progress
    STOPPED = "stopped"    # Terminal, no further ticks


@dataclass
class SweepResult:
    """Counters for one sweep"""
    as_of: date
    examined: int = 0
    settled: int = 0
    skipped: int = 0
    failed: int = 0
    penalties_applied: int = 0
    late_flagged: int = 0
    aborted: bool = False


class SettlementScheduler:
    """
    Drives the settlement sweep on a fixed interval from an APScheduler
    background scheduler.

    Stop is cooperative: it prevents future ticks and lets an in-flight
    sweep finish. A stopped scheduler cannot be started again.
    """

    JOB_ID = "settlement_sweep"

    def __init__(
        self,
        ledger: CreditLedger,
        credit_service: CreditService,
        audit_trail: Optional[AuditTrail] = None,
        interval_seconds: float = 12 * 3600,
        late_grace_days: int = 5,
        clock: Callable[[], datetime] = utc_now
    ):
        if interval_seconds <= 0:
            raise ValueError("Settlement interval must be positive")

        self.ledger = ledger
        self.credit_service = credit_service
        self.audit_trail = audit_trail
        self.interval_seconds = interval_seconds
        self.late_grace_days = late_grace_days
        self.clock = clock
        self.logger = get_logger("credit_engine.settlement")

        self._lock = threading.RLock()
        self._sweep_lock = threading.Lock()
        self._tick_context = threading.local()
        self._scheduler = BackgroundScheduler(daemon=True)
        self._state = SchedulerState.IDLE
        self.last_result: Optional[SweepResult] = None

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Whether the background scheduler is accepting ticks"""
        return self._scheduler.running

    def start(self) -> None:
        """
        Start ticking in the background. Calling start() on a started
        scheduler is a no-op.

        Raises:
            RuntimeError: If the scheduler was stopped
        """
        with self._lock:
            if self._state == SchedulerState.STOPPED:
                raise RuntimeError("Settlement scheduler was stopped and cannot be restarted")
            if self._scheduler.running:
                return

            self._scheduler.add_job(
                self._tick,
                trigger='interval',
                seconds=self.interval_seconds,
                id=self.JOB_ID,
                name="Credit settlement sweep",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._scheduler.start()

        self.logger.info(f"Settlement scheduler started (interval {self.interval_seconds}s)")
        self._audit(AuditEventType.SCHEDULER_STARTED, {"interval_seconds": self.interval_seconds})

    def stop(self, wait: bool = True) -> None:
        """
        Request a stop. The request is never lost: no tick fires after this
        returns, though a sweep already in progress runs to completion.

        Args:
            wait: Block until a sweep in progress has finished
        """
        with self._lock:
            already_stopped = self._state == SchedulerState.STOPPED
            self._state = SchedulerState.STOPPED

        if already_stopped:
            return

        # A tick cannot wait for itself to finish
        wait = wait and not getattr(self._tick_context, "active", False)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        if wait:
            # Also covers sweeps started through run_once() directly
            with self._sweep_lock:
                pass

        self.logger.info("Settlement scheduler stopped")
        self._audit(AuditEventType.SCHEDULER_STOPPED, {})

    def _tick(self) -> None:
        if self.state == SchedulerState.STOPPED:
            return
        self._tick_context.active = True
        try:
            self.run_once()
        except Exception as e:
            # Retried on the next tick
            self.logger.error(f"Settlement tick failed: {e}", exc_info=True)
        finally:
            self._tick_context.active = False

    def run_once(self, as_of: Optional[date] = None) -> SweepResult:
        """
        Run one sweep: settle the next due installment of every active
        credit with something due on or before as_of, then flag overdue
        installments as late.

        A failure to list the due credits aborts the sweep (aborted=True);
        failures of individual credits are counted and logged.
        """
        as_of = as_of or self.clock().date()
        result = SweepResult(as_of=as_of)

        with self._sweep_lock:
            with self._lock:
                if self._state == SchedulerState.IDLE:
                    self._state = SchedulerState.RUNNING
            try:
                self._sweep(result)
            finally:
                with self._lock:
                    if self._state == SchedulerState.RUNNING:
                        self._state = SchedulerState.IDLE
                self.last_result = result

        log_action(self.logger, "info", "Settlement sweep finished", action="settlement_sweep",
                   resource="settlement",
                   extra={"as_of": as_of.isoformat(), "examined": result.examined,
                          "settled": result.settled, "skipped": result.skipped,
                          "failed": result.failed, "penalties_applied": result.penalties_applied,
                          "late_flagged": result.late_flagged, "aborted": result.aborted})
        return result

    def _sweep(self, result: SweepResult) -> None:
        try:
            credits = self.ledger.find_active_credits_with_due_payments(result.as_of)
        except Exception as e:
            self.logger.error(f"Settlement sweep aborted, cannot list due credits: {e}", exc_info=True)
            result.aborted = True
            return

        for credit in credits:
            result.examined += 1
            self._settle(credit.id, credit.user_id, result)

        try:
            result.late_flagged = self.credit_service.mark_overdue_installments(
                result.as_of, self.late_grace_days
            )
        except CreditEngineError as e:
            self.logger.error(f"Flagging late installments failed: {e}")

    def _settle(self, credit_id: str, user_id: str, result: SweepResult) -> None:
        try:
            outcome = self.credit_service.settle_next_due_installment(credit_id, result.as_of)
        except InsufficientFundsError as e:
            result.failed += 1
            log_action(self.logger, "warning", "Settlement debit declined", user_id=user_id,
                       action="settle_installment", resource=f"credit:{credit_id}",
                       extra={"reason": str(e)})
            self._audit_failure(credit_id, user_id, e)
            return
        except CreditEngineError as e:
            result.failed += 1
            log_action(self.logger, "error", "Settlement failed", user_id=user_id,
                       action="settle_installment", resource=f"credit:{credit_id}",
                       extra={"error_kind": e.kind.value, "reason": str(e)})
            self._audit_failure(credit_id, user_id, e)
            return
        except Exception as e:
            result.failed += 1
            self.logger.error(f"Unexpected error settling credit {credit_id}: {e}", exc_info=True)
            return

        if not outcome.settled:
            result.skipped += 1
            self.logger.info(f"Skipped credit {credit_id}: {outcome.reason}")
            return

        result.settled += 1
        if outcome.penalty is not None and outcome.penalty.is_positive():
            result.penalties_applied += 1

    def _audit_failure(self, credit_id: str, user_id: str, error: CreditEngineError) -> None:
        self._audit(AuditEventType.SETTLEMENT_FAILED,
                    {"error_kind": error.kind.value, "reason": str(error)},
                    entity_type="credit", entity_id=credit_id, user_id=user_id)

    def _audit(self, event_type: AuditEventType, metadata: dict, entity_type: str = "scheduler",
               entity_id: str = "settlement", user_id: Optional[str] = None) -> None:
        if self.audit_trail is None:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=user_id
            )
        except Exception as e:
            self.logger.error(f"Audit write for {event_type.value} on {entity_type} {entity_id} failed: {e}",
                              exc_info=True)
