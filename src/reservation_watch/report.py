from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .logging import get_logger
from .models import Reservation, SummaryMetrics
from .notify.mailer import should_notify
from .util.errors import Outcome

LOG = get_logger(__name__)

EXPIRING_SOON_MAX_DAYS = 180

Notifier = Callable[[Reservation, int], Outcome]


class SeverityTier(str, Enum):
    CRITICAL = "critical"
    SEVERE = "severe"
    WARNING = "warning"
    CAUTION = "caution"
    NOTICE = "notice"
    NORMAL = "normal"


TIER_STYLES = {
    SeverityTier.CRITICAL: "bold white on red",
    SeverityTier.SEVERE: "bold red",
    SeverityTier.WARNING: "dark_orange",
    SeverityTier.CAUTION: "yellow",
    SeverityTier.NOTICE: "cyan",
    SeverityTier.NORMAL: "green",
}


def severity_tier(days: int) -> SeverityTier:
    # Already expired (or expiring today) sits in its own top tier.
    if days <= 0:
        return SeverityTier.CRITICAL
    if days <= 5:
        return SeverityTier.SEVERE
    if days <= 10:
        return SeverityTier.WARNING
    if days <= 15:
        return SeverityTier.CAUTION
    if days <= 30:
        return SeverityTier.NOTICE
    return SeverityTier.NORMAL


def is_expiring_soon(days: int) -> bool:
    return 1 <= days <= EXPIRING_SOON_MAX_DAYS


def _fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


class ReportRenderer:
    """
    Prints one block per reservation and fires expiry warnings inline.

    A failed warning is logged and the next reservation is rendered regardless.
    """

    def __init__(self, console: Optional[Console] = None, notifier: Optional[Notifier] = None) -> None:
        self._console = console or Console()
        self._notifier = notifier
        self.notifications_attempted = 0
        self.notifications_failed = 0

    def render(
        self,
        reservations: Sequence[Reservation],
        status_label: str,
        now: datetime,
        *,
        notify: bool = False,
    ) -> None:
        self._console.print()
        self._console.rule(f"[bold]{status_label} reservations ({len(reservations)})[/bold]")
        if not reservations:
            self._console.print(f"[dim]No {status_label.lower()} reservations.[/dim]")
            return
        for reservation in reservations:
            days = reservation.days_remaining(now)
            self.render_block(reservation, days)
            if notify and self._notifier is not None and should_notify(days):
                self._dispatch(self._notifier, reservation, days)

    def render_block(self, reservation: Reservation, days: int) -> None:
        style = TIER_STYLES[severity_tier(days)]
        console = self._console
        console.print()
        if reservation.display_name:
            console.print(f"[bold]{escape(reservation.display_name)}[/bold]")
        console.print(f"  Reservation ID : {escape(reservation.reservation_id)}", highlight=False)
        console.print(f"  SKU            : {escape(reservation.sku_name)}", highlight=False)
        console.print(f"  Start date     : {_fmt_date(reservation.effective_date)}", highlight=False)
        console.print(f"  Expiry date    : {_fmt_date(reservation.expiry_date)}", highlight=False)
        console.print(f"  Quantity       : {reservation.quantity}", highlight=False)
        console.print(f"  Days remaining : [{style}]{days}[/{style}]", highlight=False)

    def _dispatch(self, notifier: Notifier, reservation: Reservation, days: int) -> None:
        self.notifications_attempted += 1
        outcome = notifier(reservation, days)
        if not outcome.ok:
            self.notifications_failed += 1
            LOG.warning(
                "Failed to send expiry warning",
                extra={
                    "reservation_id": reservation.reservation_id,
                    "days_remaining": days,
                    "error": outcome.error,
                },
            )


def summarize(active: Sequence[Reservation], expired: Sequence[Reservation], now: datetime) -> SummaryMetrics:
    return SummaryMetrics(
        total_active=len(active),
        total_expired=len(expired),
        expiring_soon=sum(1 for r in active if is_expiring_soon(r.days_remaining(now))),
        success=True,
    )


def render_summary_table(metrics: SummaryMetrics, console: Optional[Console] = None) -> None:
    table = Table(title="Reservation Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Active reservations", str(metrics.total_active))
    table.add_row("Expired reservations", str(metrics.total_expired))
    table.add_row(f"Expiring within {EXPIRING_SOON_MAX_DAYS} days", str(metrics.expiring_soon))
    (console or Console()).print(table)
