"""
Batch Orchestrator

Drives one disbursement session through its states:

    IDLE -> PLANNING -> AWAITING_CONFIRMATION -> VALIDATING -> EXECUTING
         -> FLUSHING -> COMPLETED | ABORTED

Every amount is converted to base units while planning, so a record the asset
cannot represent stops the session before anything is sent.

Abort-on-first-error: the first fee-ceiling or transfer failure stops the
batch. Records after the failing one stay pending. An interruption (Ctrl-C)
during execution logs the in-flight record as it stands. Whatever the exit
path, the session ledger is flushed exactly once.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from .errors import DisburseError, EmptyBatch, PersistenceError, UserCancelled
from .fee_guard import FeeGuard
from .funds_validator import FundsValidator
from .network_client import EXACT_PRECISION
from .record_parser import TransferRecord
from .session_ledger import SessionLedger
from .transfer_executor import TransferExecutor


class SessionState(str, Enum):
    IDLE = 'idle'
    PLANNING = 'planning'
    AWAITING_CONFIRMATION = 'awaiting_confirmation'
    VALIDATING = 'validating'
    EXECUTING = 'executing'
    FLUSHING = 'flushing'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


@dataclass
class BatchPlan:
    """Ordered records, per-asset totals and the sending account"""
    records: List[TransferRecord]
    totals: Dict[str, Decimal]
    account: object

    @classmethod
    def build(cls, records: List[TransferRecord], account) -> 'BatchPlan':
        if not records:
            raise EmptyBatch()

        totals: Dict[str, Decimal] = {}
        with localcontext() as ctx:
            ctx.prec = EXACT_PRECISION
            for record in records:
                asset_type = record.asset_type.upper()
                totals[asset_type] = totals.get(asset_type, Decimal(0)) + record.amount

        return cls(records=list(records), totals=totals, account=account)

    @property
    def recipient_count(self) -> int:
        return len(self.records)

    def describe_totals(self) -> str:
        return ", ".join(f"{total} {asset_type}" for asset_type, total in self.totals.items())


@dataclass
class SessionOutcome:
    """What a finished session reports back to the session loop"""
    state: SessionState
    error: Optional[DisburseError] = None
    plan: Optional[BatchPlan] = None
    log_path: Optional[Path] = None
    persistence_error: Optional[PersistenceError] = None

    @property
    def completed(self) -> bool:
        return self.state == SessionState.COMPLETED


class BatchOrchestrator:
    """
    One session of sequential disbursement

    The network client, operator prompt and sending account are injected so
    any of them can be replaced by a test double.
    """

    def __init__(
        self,
        client,
        account,
        prompt,
        fee_guard: FeeGuard,
        funds_validator: Optional[FundsValidator] = None,
        executor: Optional[TransferExecutor] = None
    ):
        self.client = client
        self.account = account
        self.prompt = prompt
        self.funds_validator = funds_validator or FundsValidator(client)
        self.executor = executor or TransferExecutor(client, fee_guard)
        self.state = SessionState.IDLE

    def _enter(self, state: SessionState):
        logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, records: List[TransferRecord], ledger: SessionLedger) -> SessionOutcome:
        """
        Run a full session over records

        Batch-time errors never escape: they end up in the returned outcome
        after the ledger has been flushed.
        """
        self.state = SessionState.IDLE
        plan: Optional[BatchPlan] = None
        error: Optional[DisburseError] = None

        logger.info("Starting batch Transfer ...")

        try:
            self._enter(SessionState.PLANNING)
            plan = BatchPlan.build(records, self.account)
            self._check_amounts(plan)

            self._enter(SessionState.AWAITING_CONFIRMATION)
            await self._confirm(plan)

            self._enter(SessionState.VALIDATING)
            await self.funds_validator.validate(self.account, plan.totals)

            self._enter(SessionState.EXECUTING)
            await self._execute(plan, ledger)

        except DisburseError as e:
            error = e
            self._report_abort(e)

        finally:
            self._enter(SessionState.FLUSHING)
            log_path, persistence_error = self._flush(ledger)

        self._enter(SessionState.COMPLETED if error is None else SessionState.ABORTED)

        summary = ledger.summary()
        if summary:
            logger.info(f"Session summary: {summary}")

        return SessionOutcome(
            state=self.state,
            error=error,
            plan=plan,
            log_path=log_path,
            persistence_error=persistence_error,
        )

    async def _confirm(self, plan: BatchPlan):
        message = f"Are you sure to transfer {plan.describe_totals()} to {plan.recipient_count} addresses?"
        if not await self.prompt.ask_confirmation(message, default=False):
            raise UserCancelled()

    def _check_amounts(self, plan: BatchPlan):
        """Every asset must be configured and every amount representable in base units"""
        for record in plan.records:
            self.client.to_units(record.amount, record.asset_type, record.name)

    async def _execute(self, plan: BatchPlan, ledger: SessionLedger):
        records = plan.records

        for index, record in enumerate(records):
            logger.info(f"[{index + 1}/{len(records)}] {record.name}")
            try:
                await self.executor.execute(self.account, record)
            except BaseException:
                # Failure or interruption: the in-flight record is logged as it stands
                ledger.record(record)
                # Remaining records were never attempted and stay pending
                for remaining in records[index + 1:]:
                    ledger.record(remaining)
                raise

            ledger.record(record)

        logger.success(f"✅ All {len(records)} transfers confirmed")

    def _report_abort(self, error: DisburseError):
        logger.error(f"Batch aborted during {self.state.value}: {error.kind}: {error.message}")

    def _flush(self, ledger: SessionLedger):
        try:
            return ledger.flush(), None
        except PersistenceError as e:
            logger.error(f"✗ {e.message}")
            logger.error("Session results were not persisted; dumping them here:")
            for line in ledger.to_lines():
                logger.error(f"  {line}")
            return None, e
