"""
Batch Disburse CLI

Process lifecycle:
1. Load config and credentials
2. Verify node connectivity (fatal if unreachable)
3. Loop sessions until the operator chooses to exit:
   ask for the list path -> parse -> orchestrate -> flush

Any error ends the process with exit code 1 after being reported.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger

from .batch_orchestrator import BatchOrchestrator
from .config import DEFAULT_CONFIG_PATH, DisburseConfig
from .errors import DisburseError
from .fee_guard import FeeGuard
from .network_client import NetworkClient, SendingAccount
from .operator_prompt import OperatorPrompt
from .record_parser import RecordParser
from .session_ledger import SessionLedger


LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Route loguru to stderr, and optionally to a rotating file"""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=10, encoding="utf-8")


async def run(config: DisburseConfig, client=None, account=None, prompt=None) -> int:
    """
    Run sessions until the operator exits or an error occurs

    Returns:
        Process exit code
    """
    client = client or NetworkClient.from_config(config)
    prompt = prompt or OperatorPrompt()

    try:
        block_number = await client.get_block_height()
        logger.success(f"Connected to ETH node; current ETH block number {block_number} ...")

        account = account or SendingAccount.from_credentials(config.credentials)
        parser = RecordParser(client.is_valid_address)
        orchestrator = BatchOrchestrator(client, account, prompt, FeeGuard(config.max_gas_cost))

        while True:
            filepath = await prompt.ask_text("What's list file path?", default=config.default_input_path)
            records = parser.parse_file(filepath)

            outcome = await orchestrator.run(records, SessionLedger(config.output_folder))
            if outcome.error is not None:
                raise outcome.error
            if outcome.persistence_error is not None:
                raise outcome.persistence_error

            if await prompt.ask_confirmation("Do you want to exit (type No to continue)?", default=True):
                logger.info("Terminating program, good luck!")
                return 0

    except DisburseError as e:
        logger.error(f"{e.kind}: {e.message}")
        logger.error("Terminating Program ...")
        return 1

    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="batch-disburse",
        description="Send tab-delimited batches of transfers from one account, one at a time."
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        config = DisburseConfig.load(args.config)
    except DisburseError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1

    configure_logging(config.log_level, config.log_file)
    config.ensure_directories()

    return asyncio.run(run(config))
