from __future__ import annotations

import logging
import sys
from datetime import datetime
from time import perf_counter
from typing import Any, Dict, List, Optional

from rich.console import Console

from .auth.providers import SessionEstablisher
from .azure.reservations import fetch_reservations, partition_reservations
from .config import RunConfig, dump_config, load_run_config
from .export.log_analytics import TelemetryEmitter
from .logging import LogConfig, get_logger, setup_logging
from .models import SummaryMetrics
from .notify.mailer import NotificationDispatcher
from .report import ReportRenderer, render_summary_table, summarize
from .util.errors import ExitCode, as_exit_code
from .util.time import utc_now

LOG = get_logger(__name__)


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    **extra: Any,
) -> None:
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(step)
        elif phase in {"complete", "error", "skipped"}:
            duration_ms = timers.finish(step)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _emit_metrics(emitter: Optional[TelemetryEmitter], metrics: SummaryMetrics) -> None:
    if emitter is None:
        return
    outcome = emitter.emit(metrics)
    if not outcome.ok:
        _log_event(
            LOG,
            logging.WARNING,
            "Failed to send run metrics to Log Analytics",
            step="telemetry",
            phase="warning",
            error=outcome.error,
        )


def cmd_report(
    cfg: RunConfig,
    *,
    emitter: Optional[TelemetryEmitter] = None,
    establisher: Optional[SessionEstablisher] = None,
    console: Optional[Console] = None,
    now: Optional[datetime] = None,
) -> int:
    console = console or Console()
    timers = _StepTimers()
    _log_event(LOG, logging.INFO, "Starting reservation report", step="run", phase="start", timers=timers)
    LOG.debug("Effective configuration", extra={"config": dump_config(cfg)})

    _log_event(
        LOG,
        logging.INFO,
        "Session setup started",
        step="auth",
        phase="start",
        timers=timers,
        auth_mode=cfg.auth_mode.value,
    )
    sessions = (establisher or SessionEstablisher(cfg)).ensure()
    _log_event(
        LOG,
        logging.INFO,
        "Sessions ready",
        step="auth",
        phase="complete",
        timers=timers,
        subscription_id=sessions.subscription_id,
    )

    _log_event(LOG, logging.INFO, "Fetching reservations", step="inventory", phase="start", timers=timers)
    reservations = fetch_reservations(sessions)
    reference_time = now or utc_now()
    _log_event(
        LOG,
        logging.INFO,
        "Reservations fetched",
        step="inventory",
        phase="complete",
        timers=timers,
        count=len(reservations),
    )
    if not reservations:
        console.print("[yellow]No reservations found.[/yellow]")
        _log_event(LOG, logging.INFO, "Nothing to report", step="run", phase="complete", timers=timers)
        return int(ExitCode.OK)

    split = partition_reservations(reservations, reference_time)
    if cfg.active_only and cfg.expired_only:
        LOG.warning("Both --active-only and --expired-only are set; neither reservation set will be reported")

    dispatcher = NotificationDispatcher(
        sessions,
        sender_email=cfg.sender_email,
        recipients=cfg.mail_recipients,
    )
    renderer = ReportRenderer(console=console, notifier=dispatcher.send)

    _log_event(LOG, logging.INFO, "Rendering report", step="render", phase="start", timers=timers)
    if not cfg.expired_only:
        renderer.render(split.active, "Active", reference_time, notify=True)
    if not cfg.active_only:
        renderer.render(split.expired, "Expired", reference_time)
    _log_event(
        LOG,
        logging.INFO,
        "Report rendered",
        step="render",
        phase="complete",
        timers=timers,
        active=len(split.active),
        expired=len(split.expired),
        notifications_attempted=renderer.notifications_attempted,
        notifications_failed=renderer.notifications_failed,
    )

    metrics = summarize(split.active, split.expired, reference_time)
    console.print()
    render_summary_table(metrics, console=console)
    _emit_metrics(emitter, metrics)

    _log_event(LOG, logging.INFO, "Reservation report complete", step="run", phase="complete", timers=timers)
    return int(ExitCode.OK)


def main(argv: Optional[List[str]] = None) -> None:
    emitter: Optional[TelemetryEmitter] = None
    try:
        cfg = load_run_config(argv)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))
        emitter = TelemetryEmitter.from_config(cfg)
        code = cmd_report(cfg, emitter=emitter)
        sys.exit(code)
    except SystemExit as e:
        # argparse exits 2 on a usage error; the CLI only reports 0 or 1.
        if isinstance(e.code, int) and e.code > int(ExitCode.FAILURE):
            sys.exit(int(ExitCode.FAILURE))
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())  # ensure something is configured
        LOG.error("Execution failed", exc_info=True, extra={"error": str(e)})
        _emit_metrics(emitter, SummaryMetrics.failed())
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
