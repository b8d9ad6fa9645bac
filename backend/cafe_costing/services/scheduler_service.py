"""Background scheduler for periodic accounting jobs."""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from cafe_costing.core.config import settings
from cafe_costing.db.base import utcnow
from cafe_costing.db.session import SessionLocal
from cafe_costing.services.accounting_service import AccountingService, SnapshotApprovedError

logger = logging.getLogger(__name__)

DAILY_SNAPSHOT_TASK = "daily_accounting_snapshots"


class TaskScheduler:
    """Lightweight asyncio-based task scheduler.

    Runs registered tasks at fixed intervals. State is in memory only and
    does not survive restarts. Synchronous tasks run in a worker thread so
    database work does not block the event loop.
    """

    def __init__(self, tick_seconds: float = 60):
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._running = False
        self._task_handle: Optional[asyncio.Task] = None
        self.tick_seconds = tick_seconds

    async def run_due(self, now: Optional[datetime] = None) -> List[str]:
        """Run every task whose ``next_run`` has passed; return their names."""
        now = now or utcnow()
        ran = []
        for name, task in list(self._tasks.items()):
            if now < task["next_run"]:
                continue
            try:
                if inspect.iscoroutinefunction(task["func"]):
                    await task["func"]()
                else:
                    await asyncio.to_thread(task["func"])
                task["last_run"] = now
                task["run_count"] = task.get("run_count", 0) + 1
                task["last_error"] = None
                logger.debug(f"Scheduled task '{name}' completed")
            except Exception as e:
                task["last_error"] = str(e)
                logger.error(f"Scheduled task '{name}' failed: {e}")
            task["next_run"] = now + task["interval"]
            ran.append(name)
        return ran

    async def _loop(self):
        while self._running:
            await self.run_due()
            await asyncio.sleep(self.tick_seconds)

    def start(self):
        """Start the scheduler loop on the running event loop."""
        if self._running:
            return
        self._running = True
        self._task_handle = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Task scheduler started")

    def stop(self):
        self._running = False
        if self._task_handle:
            self._task_handle.cancel()
            self._task_handle = None
        logger.info("Task scheduler stopped")

    def add_task(self, name: str, func: Callable, interval_seconds: int, first_run_delay: int = 10):
        self._tasks[name] = {
            "func": func,
            "interval": timedelta(seconds=interval_seconds),
            "next_run": utcnow() + timedelta(seconds=first_run_delay),
            "last_run": None,
            "run_count": 0,
            "last_error": None,
        }
        logger.info(f"Scheduled task '{name}' every {interval_seconds}s")

    def remove_task(self, name: str):
        self._tasks.pop(name, None)

    def get_status(self) -> Dict[str, Any]:
        return {
            name: {
                "last_run": t["last_run"].isoformat() if t["last_run"] else None,
                "next_run": t["next_run"].isoformat(),
                "interval_seconds": int(t["interval"].total_seconds()),
                "run_count": t.get("run_count", 0),
                "last_error": t.get("last_error"),
            }
            for name, t in self._tasks.items()
        }


def save_daily_snapshots(
    session_factory: Callable = SessionLocal,
    tenant_id: Optional[str] = None,
    branch_ids: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Snapshot today for each configured branch. Returns a status per branch.

    Approved snapshots are left alone; any other failure is re-raised
    after every branch has been attempted.
    """
    tenant_id = tenant_id or settings.snapshot_tenant_id
    branch_ids = settings.snapshot_branch_list if branch_ids is None else branch_ids
    results: Dict[str, str] = {}
    failures = []

    for branch_id in branch_ids:
        db = session_factory()
        try:
            AccountingService(db).save_daily_snapshot(tenant_id, branch_id, created_by="scheduler")
            results[branch_id] = "saved"
        except SnapshotApprovedError:
            results[branch_id] = "approved"
        except Exception as e:
            db.rollback()
            logger.error(f"Daily snapshot failed for branch {branch_id}: {e}")
            results[branch_id] = "failed"
            failures.append(branch_id)
        finally:
            db.close()

    if failures:
        raise RuntimeError(f"Daily snapshot failed for branches: {', '.join(failures)}")
    return results


def register_default_tasks(target: "TaskScheduler") -> None:
    target.add_task(DAILY_SNAPSHOT_TASK, save_daily_snapshots, settings.snapshot_interval_seconds)


scheduler = TaskScheduler()
