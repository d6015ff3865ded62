"""Threshold alerts for cost and token burn rate.

All functions are pure: they look only at the values passed in and keep no
record of alerts raised earlier, so a condition that still holds fires
again on every evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, tzinfo
from statistics import mean
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from claude_costs.analyzer import AnalysisReport
    from claude_costs.monitor.tracker import SessionSnapshot

# Burn-rate alerts look at the mean of this many most recent samples
BURN_RATE_WINDOW = 5

DAILY_COST = "daily_cost"
SESSION_COST = "session_cost"
TOKEN_BURN_RATE = "token_burn_rate"


@dataclass(frozen=True)
class AlertThresholds:
    enabled: bool = True
    daily_cost_threshold: float = 10.0
    session_cost_threshold: float = 2.0
    token_burn_rate_threshold: float = 10000


@dataclass(frozen=True)
class Alert:
    type: str
    severity: str  # "warning" or "critical"
    message: str
    value: float
    threshold: float
    session_id: str | None = None


def evaluate_alerts(
    thresholds: AlertThresholds,
    *,
    daily_cost: float | None = None,
    session_cost: float | None = None,
    burn_rate: float | None = None,
    session_id: str | None = None,
) -> list[Alert]:
    """Compare each supplied value against its threshold (strictly greater fires)."""
    alerts: list[Alert] = []
    if not thresholds.enabled:
        return alerts

    if daily_cost is not None and daily_cost > thresholds.daily_cost_threshold:
        alerts.append(Alert(
            type=DAILY_COST,
            severity="warning",
            message=(
                f"Daily cost (${daily_cost:.2f}) exceeds threshold "
                f"(${thresholds.daily_cost_threshold:.2f})"
            ),
            value=daily_cost,
            threshold=thresholds.daily_cost_threshold,
            session_id=session_id,
        ))

    if session_cost is not None and session_cost > thresholds.session_cost_threshold:
        alerts.append(Alert(
            type=SESSION_COST,
            severity="warning",
            message=(
                f"Session cost (${session_cost:.2f}) exceeds threshold "
                f"(${thresholds.session_cost_threshold:.2f})"
            ),
            value=session_cost,
            threshold=thresholds.session_cost_threshold,
            session_id=session_id,
        ))

    if burn_rate is not None and burn_rate > thresholds.token_burn_rate_threshold:
        alerts.append(Alert(
            type=TOKEN_BURN_RATE,
            severity="critical",
            message=(
                f"Token burn rate ({burn_rate:.0f} tokens/min) exceeds threshold "
                f"({thresholds.token_burn_rate_threshold:.0f} tokens/min)"
            ),
            value=burn_rate,
            threshold=thresholds.token_burn_rate_threshold,
            session_id=session_id,
        ))

    return alerts


def recent_burn_rate(snapshot: SessionSnapshot) -> float | None:
    """Mean rate over the last BURN_RATE_WINDOW samples, None without samples."""
    recent = snapshot.burn_rate_history[-BURN_RATE_WINDOW:]
    if not recent:
        return None
    return mean(sample.rate for sample in recent)


def evaluate_session_alerts(
    snapshot: SessionSnapshot,
    thresholds: AlertThresholds,
    daily_cost: float | None = None,
) -> list[Alert]:
    """Alerts for one live session snapshot."""
    return evaluate_alerts(
        thresholds,
        daily_cost=daily_cost,
        session_cost=snapshot.total_cost,
        burn_rate=recent_burn_rate(snapshot),
        session_id=snapshot.session_id,
    )


def evaluate_report_alerts(
    report: AnalysisReport,
    thresholds: AlertThresholds,
    today: date,
    tz: tzinfo | None = None,
) -> list[Alert]:
    """Alerts for a batch report: today's cost, priciest conversation, peak burn rate."""
    from claude_costs.analyzer import daily_cost_on

    top = report.conversations[0] if report.conversations else None
    return evaluate_alerts(
        thresholds,
        daily_cost=daily_cost_on(report.conversations, today, tz),
        session_cost=top.total_cost if top is not None else 0.0,
        burn_rate=report.token_burn.max_burn_rate,
        session_id=top.conversation_id if top is not None else None,
    )
