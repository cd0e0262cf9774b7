"""
Session-level tests: ordering, abort-on-first-error and ledger flushing.
"""
import asyncio
import json
from decimal import Decimal

import pytest
from web3 import Web3

from batch_disburse.batch_orchestrator import BatchOrchestrator, BatchPlan, SessionState
from batch_disburse.errors import (
    AmountPrecisionExceeded,
    EmptyBatch,
    FeeCeilingExceeded,
    InsufficientFunds,
    TransferFailed,
    UserCancelled,
)
from batch_disburse.record_parser import RecordParser, TransferStatus
from batch_disburse.session_ledger import SessionLedger

from conftest import ALICE, BOB, CAROL, EXPENSIVE_GAS, FakeNetworkClient, ScriptedPrompt, make_record


def read_log(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def make_orchestrator(client, account, fee_guard, confirm=True):
    prompt = ScriptedPrompt(confirmations=[confirm])
    return BatchOrchestrator(client, account, prompt, fee_guard), prompt


def test_plan_totals_are_exact_per_asset():
    records = [
        make_record("A", ALICE, "0.1"),
        make_record("B", BOB, "0.2", asset_type="USDT"),
        make_record("C", CAROL, "0.2"),
        make_record("D", ALICE, "12345678901234567890.123456789012345678"),
    ]

    plan = BatchPlan.build(records, account=None)

    assert plan.totals == {
        'ETH': Decimal("12345678901234567890.423456789012345678"),
        'USDT': Decimal("0.2"),
    }
    assert list(plan.totals) == ['ETH', 'USDT']
    assert plan.recipient_count == 4


def test_plan_rejects_empty_batch():
    with pytest.raises(EmptyBatch):
        BatchPlan.build([], account=None)


@pytest.mark.asyncio
async def test_full_batch_completes_in_file_order(client, account, fee_guard, tmp_path):
    parser = RecordParser(client.is_valid_address)
    records = parser.parse_lines([
        f"A\t{ALICE}\t1\tETH",
        "# comment",
        f"B\t{BOB}\t2\tETH",
        f"C\t{CAROL}\t3\tETH",
    ])
    orchestrator, prompt = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert outcome.state == SessionState.COMPLETED
    assert outcome.completed
    assert outcome.error is None
    assert client.submitted_recipients == [ALICE, BOB, CAROL]
    assert all(r.status == TransferStatus.CONFIRMED for r in records)
    assert prompt.questions == ["Are you sure to transfer 6 ETH to 3 addresses?"]

    entries = read_log(outcome.log_path)
    assert [e['name'] for e in entries] == ["A", "B", "C"]
    assert all(e['status'] == 'confirmed' and e['tx_reference'] for e in entries)


@pytest.mark.asyncio
async def test_fee_ceiling_on_second_record_halts_batch(client, account, fee_guard, three_records, tmp_path):
    client.gas_by_recipient[BOB] = EXPENSIVE_GAS
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(three_records, SessionLedger(str(tmp_path)))

    assert outcome.state == SessionState.ABORTED
    assert isinstance(outcome.error, FeeCeilingExceeded)
    assert client.submitted_recipients == [ALICE]

    alice, bob, carol = three_records
    assert alice.status == TransferStatus.CONFIRMED
    assert bob.status == TransferStatus.FAILED
    assert bob.tx_reference is None
    assert carol.status == TransferStatus.PENDING

    entries = read_log(outcome.log_path)
    assert [(e['name'], e['status']) for e in entries] == [
        ("Alice", "confirmed"),
        ("Bob", "failed"),
        ("Carol", "pending"),
    ]
    assert "Gas cost" in entries[1]['error']


@pytest.mark.asyncio
async def test_transfer_failure_halts_batch(client, account, fee_guard, three_records, tmp_path):
    client.reject_recipients.add(BOB)
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(three_records, SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, TransferFailed)
    assert client.submitted_recipients == [ALICE, BOB]
    assert [r.status for r in three_records] == [
        TransferStatus.CONFIRMED,
        TransferStatus.FAILED,
        TransferStatus.PENDING,
    ]
    assert [e['status'] for e in read_log(outcome.log_path)] == ["confirmed", "failed", "pending"]


@pytest.mark.asyncio
async def test_failure_on_first_record_logs_everything_pending(client, account, fee_guard, three_records, tmp_path):
    client.gas_by_recipient[ALICE] = EXPENSIVE_GAS
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(three_records, SessionLedger(str(tmp_path)))

    assert client.submitted == []
    assert [e['status'] for e in read_log(outcome.log_path)] == ["failed", "pending", "pending"]


@pytest.mark.asyncio
async def test_insufficient_funds_skips_execution(account, fee_guard, tmp_path):
    client = FakeNetworkClient(balances={'ETH': Decimal("10")})
    records = [make_record("A", ALICE, "5"), make_record("B", BOB, "7")]
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert outcome.state == SessionState.ABORTED
    assert isinstance(outcome.error, InsufficientFunds)
    assert outcome.error.balance == Decimal("10")
    assert outcome.error.required == Decimal("12")
    assert client.submitted == []
    assert read_log(outcome.log_path) == []


@pytest.mark.asyncio
async def test_operator_decline_flushes_empty_ledger(client, account, fee_guard, three_records, tmp_path):
    orchestrator, _ = make_orchestrator(client, account, fee_guard, confirm=False)

    outcome = await orchestrator.run(three_records, SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, UserCancelled)
    assert client.balance_queries == []
    assert client.submitted == []
    assert outcome.log_path.exists()
    assert read_log(outcome.log_path) == []


@pytest.mark.asyncio
async def test_empty_batch_aborts_and_flushes(client, account, fee_guard, tmp_path):
    orchestrator, prompt = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run([], SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, EmptyBatch)
    assert prompt.questions == []
    assert outcome.log_path.exists()


@pytest.mark.asyncio
async def test_balance_checked_once_before_any_submission(account, fee_guard, three_records, tmp_path):
    events = []

    class TracingClient(FakeNetworkClient):
        async def get_balance(self, address, asset_type):
            events.append('balance')
            return await super().get_balance(address, asset_type)

        async def submit(self, raw_tx, on_sent=None):
            events.append('submit')
            return await super().submit(raw_tx, on_sent=on_sent)

    orchestrator, _ = make_orchestrator(TracingClient(), account, fee_guard)

    await orchestrator.run(three_records, SessionLedger(str(tmp_path)))

    assert events == ['balance', 'submit', 'submit', 'submit']


@pytest.mark.asyncio
async def test_mixed_assets_summary_and_balances(account, fee_guard, tmp_path):
    client = FakeNetworkClient(balances={'ETH': Decimal("5"), 'USDT': Decimal("500")})
    records = [
        make_record("A", ALICE, "1"),
        make_record("B", BOB, "250", asset_type="USDT"),
        make_record("C", CAROL, "0.5"),
    ]
    orchestrator, prompt = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert outcome.completed
    assert prompt.questions == ["Are you sure to transfer 1.5 ETH, 250 USDT to 3 addresses?"]
    assert [asset for _, asset in client.balance_queries] == ['ETH', 'USDT']


@pytest.mark.asyncio
async def test_persistence_error_keeps_ledger(client, account, fee_guard, three_records, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("occupied")
    ledger = SessionLedger(str(blocker))
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(three_records, ledger)

    assert outcome.state == SessionState.COMPLETED
    assert outcome.log_path is None
    assert outcome.persistence_error is not None
    assert [e.name for e in ledger.entries()] == ["Alice", "Bob", "Carol"]


@pytest.mark.asyncio
async def test_orchestrator_can_run_again(client, account, fee_guard, tmp_path):
    prompt = ScriptedPrompt(confirmations=[True, True])
    orchestrator = BatchOrchestrator(client, account, prompt, fee_guard)

    first = await orchestrator.run([make_record("A", ALICE, "1")], SessionLedger(str(tmp_path)))
    second = await orchestrator.run([make_record("B", BOB, "1")], SessionLedger(str(tmp_path)))

    assert first.completed and second.completed
    assert first.log_path != second.log_path
    assert [e['name'] for e in read_log(second.log_path)] == ["B"]


def test_plan_totals_ignore_label_case():
    records = [make_record("A", ALICE, "6", asset_type="ETH"), make_record("B", BOB, "6", asset_type="eth")]

    plan = BatchPlan.build(records, account=None)

    assert plan.totals == {'ETH': Decimal("12")}


@pytest.mark.asyncio
async def test_label_case_cannot_split_the_funds_check(account, fee_guard, tmp_path):
    client = FakeNetworkClient(balances={'ETH': Decimal("10")})
    records = [make_record("A", ALICE, "6", asset_type="ETH"), make_record("B", BOB, "6", asset_type="eth")]
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, InsufficientFunds)
    assert outcome.error.required == Decimal("12")
    assert client.submitted == []


@pytest.mark.asyncio
async def test_unrepresentable_amount_stops_before_any_transfer(client, account, fee_guard, tmp_path):
    records = [
        make_record("Alice", ALICE, "1"),
        make_record("Bob", BOB, "0.0000000000000000001"),
        make_record("Carol", CAROL, "1"),
    ]
    orchestrator, prompt = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, AmountPrecisionExceeded)
    assert "Bob" in outcome.error.message
    assert outcome.error.decimals == 18
    assert prompt.questions == []
    assert client.submitted == []
    assert read_log(outcome.log_path) == []


@pytest.mark.asyncio
async def test_token_precision_is_checked_per_asset(account, fee_guard, tmp_path):
    client = FakeNetworkClient(balances={'ETH': Decimal("5"), 'USDT': Decimal("500")}, decimals={'USDT': 6})
    records = [make_record("A", ALICE, "1"), make_record("B", BOB, "2.0000001", asset_type="USDT")]
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    outcome = await orchestrator.run(records, SessionLedger(str(tmp_path)))

    assert isinstance(outcome.error, AmountPrecisionExceeded)
    assert outcome.error.asset_type == "USDT"
    assert client.submitted == []


@pytest.mark.asyncio
async def test_interrupted_execution_still_logs_every_record(client, account, fee_guard, three_records, tmp_path):
    client.interrupt_recipients.add(BOB)
    ledger = SessionLedger(str(tmp_path))
    orchestrator, _ = make_orchestrator(client, account, fee_guard)

    with pytest.raises(asyncio.CancelledError):
        await orchestrator.run(three_records, ledger)

    entries = read_log(ledger.flushed_path)
    assert [(e['name'], e['status']) for e in entries] == [
        ("Alice", "confirmed"),
        ("Bob", "submitted"),
        ("Carol", "pending"),
    ]
    assert entries[1]['tx_reference'] == Web3.to_hex(bytes([2]) * 32)
