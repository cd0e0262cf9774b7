"""
Batch Disburse

Operator-run batch disbursement from one account to many addresses.

Components:
- record_parser: Tab-delimited list file to validated transfer records
- fee_guard: Per-transfer fee projection with a hard ceiling
- funds_validator: One-time balance check before any submission
- transfer_executor: Sign, submit and confirm a single transfer
- batch_orchestrator: Session state machine, abort-on-first-error
- session_ledger: Ordered session log flushed as JSON Lines
- network_client: web3 node client and sending account
- operator_prompt: questionary operator interaction
- config: YAML + environment configuration

Safety:
1. Address format checked (including EIP-55 checksum) before anything runs
2. Every amount fits its asset's decimals before the operator is asked
3. Operator confirms the per-asset totals
4. Balance covers the whole batch before the first transfer
5. Every transfer is priced against the fee ceiling before signing
6. One transaction in flight at a time
7. First failure stops the batch; the session log is always written
"""

from .batch_orchestrator import (
    BatchOrchestrator,
    BatchPlan,
    SessionOutcome,
    SessionState,
)
from .config import (
    AssetConfig,
    DisburseConfig,
)
from .fee_guard import (
    FeeGuard,
    FeeQuote,
)
from .funds_validator import FundsValidator
from .network_client import (
    NetworkClient,
    SendingAccount,
)
from .operator_prompt import OperatorPrompt
from .record_parser import (
    RecordParser,
    TransferRecord,
    TransferStatus,
)
from .session_ledger import SessionLedger
from .transfer_executor import (
    TransferExecutor,
    TransferReceipt,
)

__all__ = [
    # Session
    'BatchOrchestrator',
    'BatchPlan',
    'SessionOutcome',
    'SessionState',
    'SessionLedger',

    # Pipeline
    'RecordParser',
    'TransferRecord',
    'TransferStatus',
    'FeeGuard',
    'FeeQuote',
    'FundsValidator',
    'TransferExecutor',
    'TransferReceipt',

    # Collaborators
    'NetworkClient',
    'SendingAccount',
    'OperatorPrompt',
    'DisburseConfig',
    'AssetConfig',
]

__version__ = '1.0.0'
