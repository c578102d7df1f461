"""
Dashboard storage: TinyDB-backed persistence of the dashboard record.

The whole record (widgets + provider API keys) lives in a single named
document so that a reload restores exactly what was saved.
"""

import logging
import os
import time
from pathlib import Path

from pydantic import ValidationError
from tinydb import Query, TinyDB

from finboard.models import DashboardRecord

logger = logging.getLogger(__name__)

_DATA_DIR = Path(os.getenv("FINBOARD_ROOT", ".")) / "data"

DEFAULT_RECORD_NAME = "finboard-storage"


class DashboardStorage:
    """TinyDB wrapper around one named storage record."""

    def __init__(self, db_path: str | Path | None = None, record_name: str = DEFAULT_RECORD_NAME):
        if db_path is None:
            db_path = _DATA_DIR / "finboard.json"
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.record_name = record_name
        self.db = TinyDB(str(db_path), indent=2, ensure_ascii=False)
        self.table = self.db.table("storage")
        logger.info(f"TinyDB storage opened: {db_path}")

    def load(self) -> DashboardRecord:
        """Saved record, or an empty one when nothing (valid) is stored."""
        Record = Query()
        results = self.table.search(Record.name == self.record_name)
        if not results:
            return DashboardRecord()
        try:
            return DashboardRecord.model_validate(results[0].get("state", {}))
        except ValidationError as e:
            logger.error(f"Stored dashboard record is invalid, starting empty: {e}")
            return DashboardRecord()

    def save(self, record: DashboardRecord):
        Record = Query()
        self.table.upsert(
            {
                "name": self.record_name,
                "state": record.model_dump(mode="json"),
                "updated_at": time.time(),
            },
            Record.name == self.record_name,
        )
        logger.debug(f"Dashboard record saved ({len(record.widgets)} widgets)")

    def close(self):
        self.db.close()
