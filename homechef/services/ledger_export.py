"""
Tip Ledger Excel Export with Concurrency Control

Appends completed tips to an .xlsx workbook for the finance team.
Several Celery workers may export at once, so every read-modify-write of the
workbook happens under a file lock. Tips already present in the workbook are
skipped, which makes repeated exports safe.

Version: 4.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd
from filelock import FileLock, Timeout

from homechef.core.config import get_settings
from homechef.domain import TipStatus, TipTransaction

logger = logging.getLogger(__name__)


class LedgerExporter:
    """File-locked Excel writer for completed tips."""

    TIP_COLUMNS = [
        "tip_id",
        "order_id",
        "from_user_id",
        "recipient_id",
        "recipient_type",
        "amount",
        "status",
        "external_reference",
        "failure_reason",
        "message",
        "created_at",
        "settled_at",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.file_path = self.data_dir / (filename or settings.ledger_export_filename)
        self.lock_path = self.file_path.with_name(self.file_path.name + ".lock")
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.excel_lock_timeout

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> Optional[pd.DataFrame]:
        """
        Load the existing workbook, or start an empty frame when there is none.

        Returns None when the workbook exists but cannot be read; writing
        anyway would replace every row exported so far.
        """
        if not self.file_path.exists():
            return pd.DataFrame(columns=self.TIP_COLUMNS)
        try:
            return pd.read_excel(self.file_path, engine="openpyxl")
        except Exception as e:
            logger.error(f"Error reading {self.file_path}: {e}")
            return None

    @staticmethod
    def _row(tip: TipTransaction, export_time: str) -> dict[str, Any]:
        return {
            "tip_id": tip.id,
            "order_id": tip.order_id,
            "from_user_id": tip.from_user_id,
            "recipient_id": tip.recipient_id,
            "recipient_type": tip.recipient_type.value,
            "amount": tip.amount,
            "status": tip.status.value,
            "external_reference": tip.external_reference,
            "failure_reason": tip.failure_reason,
            "message": tip.message,
            "created_at": tip.created_at.isoformat(),
            "settled_at": tip.settled_at.isoformat() if tip.settled_at else None,
            "exported_at": export_time,
        }

    def export_tips(self, tips: Iterable[TipTransaction]) -> dict[str, Any]:
        """
        Append completed tips to the workbook.

        Pending and failed tips are never exported; tips already in the workbook are skipped.

        Returns:
            dict: success flag, message, number of rows written
        """
        self._ensure_data_dir()
        completed = [tip for tip in tips if tip.status == TipStatus.COMPLETED]

        result = {
            "success": False,
            "message": "",
            "exported": 0,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {self.file_path.name}")

                df = self._load_or_create_df()
                if df is None:
                    result["message"] = (
                        f"{self.file_path.name} is unreadable; export skipped "
                        f"so existing rows are not overwritten"
                    )
                    return result

                known = set(df["tip_id"].astype(str)) if not df.empty else set()
                export_time = datetime.now().isoformat()
                new_rows = [
                    self._row(tip, export_time)
                    for tip in completed
                    if tip.id not in known
                ]

                if new_rows:
                    frames = [frame for frame in (df, pd.DataFrame(new_rows)) if not frame.empty]
                    df = pd.concat(frames, ignore_index=True)
                    df.to_excel(str(self.file_path), index=False, engine="openpyxl")

                logger.info(f"{len(new_rows)} tips exported to {self.file_path.name}")

                result["success"] = True
                result["message"] = f"{len(new_rows)} tips exported"
                result["exported"] = len(new_rows)
                result["exported_at"] = export_time

            logger.debug(f"Lock released for {self.file_path.name}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for {self.file_path.name}")

        return result

    def read_all(self) -> list[dict[str, Any]]:
        """Get every exported tip row."""
        if not self.file_path.exists():
            return []

        try:
            df = pd.read_excel(self.file_path, engine="openpyxl")
        except Exception as e:
            logger.error(f"Error reading {self.file_path}: {e}")
            return []
        return df.to_dict("records")

    def clear(self) -> bool:
        """Delete the workbook and its lock file."""
        try:
            for f in (self.file_path, self.lock_path):
                if f.exists():
                    f.unlink()
            logger.info("Ledger export cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing ledger export: {e}")
            return False
