"""
Security state sweep job.

Drops expired rate-limit windows, lockouts, failure counters and
suspicious-IP markers from the in-process key-value store. Expired records
are already ignored on read; the sweep only bounds memory. With Redis the
TTLs do this and a cycle sweeps nothing.

Run as a long-lived worker:
    python -m portal_guard.workers.security_sweep_job
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from portal_guard.config.settings import get_settings
from portal_guard.security.kv_store import KeyValueStore, get_kv_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class SweepStats:
    started_at: str
    completed_at: Optional[str] = None
    swept_records: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def run_security_sweep_cycle(store: Optional[KeyValueStore] = None) -> SweepStats:
    kv = store if store is not None else get_kv_store()
    stats = SweepStats(started_at=datetime.now(timezone.utc).isoformat())

    try:
        stats.swept_records = kv.sweep()
    except Exception as exc:
        stats.errors += 1
        logger.error("Security sweep failed", extra={"error": str(exc)}, exc_info=True)

    stats.completed_at = datetime.now(timezone.utc).isoformat()
    if stats.swept_records:
        logger.info("Security sweep completed", extra=stats.to_dict())
    return stats


def run_forever(interval_seconds: Optional[int] = None) -> None:
    interval = interval_seconds or get_settings().sweep_interval_seconds
    logger.info("Security sweep worker starting", extra={"interval_seconds": interval})
    while True:
        run_security_sweep_cycle()
        time.sleep(interval)


if __name__ == "__main__":
    run_forever()
