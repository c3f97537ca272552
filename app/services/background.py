"""
background.py — Fire-and-forget tasks with a recorded outcome

Best-effort work (auto order sync after an inbound email, order
confirmation email) runs outside the request in its own DB session.
Every run leaves a BackgroundTaskRun row so a failure is visible even
though it never reaches the caller.

Business Rules:
- The task function is ``async def fn(db, *args, **kwargs)``
- ExternalServiceError → SWALLOWED (expected best-effort failure, warning)
- Any other exception → FAILED (logged with traceback)
- run_background never raises; the primary operation already succeeded
- spawn() keeps a strong reference until the task finishes

Called by: services/email_ledger.py, services/conversion.py
Depends on: database, models
"""

import asyncio
import time

from loguru import logger

from ..database import SessionLocal
from ..errors import ExternalServiceError
from ..models import BackgroundTaskRun
from ..models.base import utcnow
from ..models.enums import TaskOutcome

_pending: set[asyncio.Task] = set()


async def run_background(
    name: str,
    fn,
    *args,
    entity_type: str | None = None,
    entity_id: int | None = None,
    **kwargs,
) -> TaskOutcome:
    """Run ``fn`` in a fresh session and record how it ended."""
    db = SessionLocal()
    start = time.monotonic()
    run = BackgroundTaskRun(
        name=name,
        entity_type=entity_type,
        entity_id=entity_id,
        outcome=TaskOutcome.RUNNING,
        started_at=utcnow(),
    )
    try:
        db.add(run)
        db.commit()
        run_id = run.id

        try:
            await fn(db, *args, **kwargs)
            outcome, detail = TaskOutcome.SUCCEEDED, None
        except ExternalServiceError as e:
            db.rollback()
            outcome, detail = TaskOutcome.SWALLOWED, str(e)[:1000]
            logger.warning("Background task {} swallowed failure ({} {}): {}", name, entity_type, entity_id, e)
        except Exception as e:
            db.rollback()
            outcome, detail = TaskOutcome.FAILED, f"{type(e).__name__}: {e}"[:1000]
            logger.exception("Background task {} failed ({} {})", name, entity_type, entity_id)

        run = db.get(BackgroundTaskRun, run_id)
        run.outcome = outcome
        run.detail = detail
        run.finished_at = utcnow()
        run.duration_seconds = round(time.monotonic() - start, 3)
        db.commit()
        logger.info("Background task {} → {} in {:.1f}s", name, outcome.value, run.duration_seconds)
        return outcome
    except Exception:
        # Recording the outcome itself failed (database down); nothing left to report to
        logger.exception("Background task {} could not record its outcome", name)
        db.rollback()
        return TaskOutcome.FAILED
    finally:
        db.close()


def spawn(name: str, fn, *args, **kwargs) -> asyncio.Task:
    """Schedule ``run_background`` on the running loop."""
    task = asyncio.create_task(run_background(name, fn, *args, **kwargs))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def cancel_pending() -> None:
    """Cancel every background task still running. Called on shutdown."""
    tasks = list(_pending)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Cancelled {} pending background task(s)", len(tasks))
