# campusvote/operations/health_monitor.py
# Liveness checks: database round trip and free disk for the audit log

import os
import shutil
from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from campusvote import db

MIN_FREE_DISK_GB = float(os.getenv("MIN_FREE_DISK_GB", "1"))


def _check_db() -> Dict:
    try:
        db.session.execute(text("SELECT 1"))
        db.session.rollback()
        return {"ok": True, "dialect": db.engine.dialect.name}
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"ok": False, "error": e.__class__.__name__}


def _check_disk(path=".") -> Dict:
    total, used, free = shutil.disk_usage(path)
    free_gb = free / (1024**3)
    return {"ok": free_gb >= MIN_FREE_DISK_GB, "free_gb": round(free_gb, 2), "min_required_gb": MIN_FREE_DISK_GB}


def check_health(audit_dir=".") -> Dict:
    """Aggregate overall system health."""
    database = _check_db()
    disk = _check_disk(audit_dir if os.path.isdir(audit_dir) else ".")
    return {"db": database, "disk": disk, "overall_ok": database["ok"] and disk["ok"]}
