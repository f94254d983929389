"""
Scheduler — periodic re-materialization of the egress IP whitelists.

Infrastructure layer — APScheduler (3.x) in-process scheduling driven by a
standard 5-field cron expression.

Onboarding builds the whitelist from whatever is CONFIRMED at that moment;
a confirmation that races it is picked up by the next scheduled run.
Each run goes through a LoggingExecutionContext (timing, outcome).

Graceful shutdown: SIGINT/SIGTERM stop the scheduler cleanly.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from connection_manager.railway import LoggingExecutionContext, Result

log = structlog.get_logger()

JOB_ID = "whitelist_refresh"


def create_scheduler(
    job_fn: Callable[[], Result[int]],
    cron: str = "*/15 * * * *",
    run_on_startup: bool = True,
) -> BlockingScheduler:
    """
    Create a BlockingScheduler that runs the refresh job on a cron schedule.

    Args:
        job_fn: Zero-argument callable returning Result[int] (environments refreshed).
        cron: 5-field cron expression (minute hour dom month dow).
        run_on_startup: If True, run once immediately before entering the loop.
    """
    scheduler = BlockingScheduler()
    ctx = LoggingExecutionContext(operation="WhitelistRefresh")

    def _job() -> None:
        result = ctx.execute(job_fn)
        if result.is_success():
            log.info("scheduler.job_completed", environments=result.value())
        else:
            log.error("scheduler.job_failed", failure=str(result.error()))

    minute, hour, dom, month, dow = cron.split()
    scheduler.add_job(
        _job,
        trigger=CronTrigger(minute=minute, hour=hour, day=dom, month=month, day_of_week=dow),
        id=JOB_ID,
        name="Egress IP whitelist refresh",
        replace_existing=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run")
        _job()

    _register_shutdown_signals(scheduler)

    return scheduler


def _register_shutdown_signals(scheduler: BlockingScheduler) -> None:
    def _shutdown(signum: int, frame: object) -> None:
        log.info("scheduler.shutdown_requested", signal=signal.Signals(signum).name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
