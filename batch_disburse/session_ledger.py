"""
Session Ledger

Append-only, ordered log of the records processed in one session. Flushed
once, at session end, as JSON Lines to <output_folder>/log_<timestamp>.
"""

import json
from collections import Counter
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from .errors import PersistenceError
from .record_parser import TransferRecord


class SessionLedger:
    """
    In-memory ledger for a single session

    Features:
    - Snapshots, so later mutation of a record does not rewrite history
    - Insertion order is execution order
    - Single flush; nothing can be recorded afterwards
    """

    def __init__(self, output_folder: str, started_at: Optional[datetime] = None):
        self.output_folder = Path(output_folder)
        self.started_at = started_at or datetime.now().astimezone()
        self._entries: List[TransferRecord] = []
        self.flushed_path: Optional[Path] = None

    @property
    def filename(self) -> str:
        return f"log_{self.started_at.isoformat(timespec='seconds')}"

    @property
    def is_flushed(self) -> bool:
        return self.flushed_path is not None

    def record(self, item: TransferRecord):
        """Append a snapshot of item"""
        if self.is_flushed:
            raise RuntimeError("Session ledger already flushed")
        self._entries.append(replace(item))

    def entries(self) -> List[TransferRecord]:
        return list(self._entries)

    def summary(self) -> Dict[str, int]:
        """Count of entries per status"""
        return dict(Counter(entry.status.value for entry in self._entries))

    def to_lines(self) -> List[str]:
        return [json.dumps(entry.to_dict()) for entry in self._entries]

    def flush(self) -> Path:
        """
        Write every entry, in order, one JSON object per line

        Returns:
            Path of the written log

        Raises:
            PersistenceError: if the file cannot be written (entries are kept)
        """
        if self.is_flushed:
            raise RuntimeError("Session ledger already flushed")

        logger.info("Flushing logs ...")
        path = self.output_folder / self.filename

        try:
            self.output_folder.mkdir(parents=True, exist_ok=True)
            # Two sessions in the same second must not overwrite each other
            suffix = 1
            while path.exists():
                path = self.output_folder / f"{self.filename}_{suffix}"
                suffix += 1

            with open(path, 'x', encoding='utf-8') as f:
                for line in self.to_lines():
                    f.write(line + '\n')
        except OSError as e:
            raise PersistenceError(str(path), e) from e

        self.flushed_path = path
        logger.info(f"✓ Session log written: {path} ({len(self._entries)} records)")
        return path
