"""Operator-triggered reconciliation sweeps

Scheduling belongs to whoever calls these (cron, a job runner, the CLI in
scripts/run_sweep.py). Each run opens its own session and closes it.
"""
from datetime import date
from typing import Callable, Optional

from sqlalchemy.orm import Session

from meterbill.core.logging import sweep_logger
from meterbill.core.metrics import sweep_runs_counter
from meterbill.db.session import SessionLocal
from meterbill.schemas.billing import SweepResult
from meterbill.services import billing_service


def _run(name: str, sweep: Callable[[Session], SweepResult], session_factory=None) -> SweepResult:
    db = (session_factory or SessionLocal)()
    try:
        sweep_logger.info(f"Starting {name} sweep...")
        result = sweep(db)
    except Exception as e:
        sweep_runs_counter.labels(sweep=name, status="failure").inc()
        sweep_logger.error(f"Error in {name} sweep: {e}", exc_info=True)
        raise
    finally:
        db.close()

    status = "partial" if result.failed else "success"
    sweep_runs_counter.labels(sweep=name, status=status).inc()
    sweep_logger.info(f"{name} sweep completed ({status})")
    return result


def run_reset_usage_sweep(session_factory=None, today: Optional[date] = None) -> SweepResult:
    """Renew expired periods of active auto-renewing subscriptions"""
    return _run(
        billing_service.RESET_SWEEP,
        lambda db: billing_service.reset_monthly_usage(db, today=today),
        session_factory,
    )


def run_suspend_exceeded_sweep(session_factory=None) -> SweepResult:
    """Suspend active subscriptions that used up their quota"""
    return _run(
        billing_service.SUSPEND_SWEEP,
        billing_service.check_and_suspend_exceeded_accounts,
        session_factory,
    )
