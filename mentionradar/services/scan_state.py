"""
Monitor scan-in-progress flag

The flag is the single source of truth for "a scan is running". Both the
automatic cycle and manual scans claim it with a conditional UPDATE, so
at most one of them can hold it for a monitor at any time.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from mentionradar.core.clock import utc_now
from mentionradar.db.models import Monitor

logger = logging.getLogger(__name__)


def claim_scan(db: Session, monitor_id: str, now: Optional[datetime] = None, manual: bool = False) -> bool:
    """Set the in-progress flag if it is clear. Returns True when this caller now holds it."""
    now = now or utc_now()
    values = {"is_scan_in_progress": True, "scan_started_at": now}
    if manual:
        values["last_manual_scan_at"] = now

    result = db.execute(
        update(Monitor)
        .where(Monitor.id == monitor_id, Monitor.is_scan_in_progress.is_(False))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_scan(db: Session, monitor_id: str) -> None:
    db.execute(
        update(Monitor)
        .where(Monitor.id == monitor_id)
        .values(is_scan_in_progress=False, scan_started_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()


def reset_stuck_scans(db: Session, older_than_minutes: int, now: Optional[datetime] = None) -> int:
    """Clear flags left behind by workers that died mid-scan"""
    cutoff = (now or utc_now()) - timedelta(minutes=older_than_minutes)
    result = db.execute(
        update(Monitor)
        .where(
            Monitor.is_scan_in_progress.is_(True),
            (Monitor.scan_started_at.is_(None)) | (Monitor.scan_started_at < cutoff),
        )
        .values(is_scan_in_progress=False, scan_started_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning(f"Reset {result.rowcount} stuck scan flag(s) older than {older_than_minutes} minutes")
    return result.rowcount
