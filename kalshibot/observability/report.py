from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from kalshibot.adapters.cex import AssetReference
from kalshibot.core.pricing import format_price
from kalshibot.service.runner import DecisionRecord, RunSummary


MAX_HIGHLIGHTS = 6
MAX_ERROR_LINES = 6


def format_ttl(seconds: int) -> str:
    value = max(0, int(seconds))
    return f"TTL {value // 60}m{value % 60:02d}s"


def _highlight(rec: DecisionRecord) -> str:
    q = rec.quote
    parts = []
    if q.yes_ask is not None and q.no_ask is not None:
        parts.append(f"YES {format_price(q.yes_ask)} / NO {format_price(q.no_ask)}")
    parts.append(format_ttl(q.seconds_to_close))
    tag = "QUALIFY" if rec.verdict.qualified else "skip"
    reason = f"{tag}: {rec.verdict.detail or rec.verdict.reason}"
    fills = ""
    if rec.outcomes:
        fills = " | " + ", ".join(f"{o.intent.side.value.upper()} {o.status}" for o in rec.outcomes)
    return f"- *{q.title}* ({q.ticker}) | " + " | ".join(parts) + f" | *{reason}*{fills}"


def _pick_highlights(summary: RunSummary, limit: int) -> List[DecisionRecord]:
    # qualifying markets first, then skips, each in scan order
    ordered = summary.opportunities + [d for d in summary.decisions if not d.verdict.qualified]
    return ordered[:limit]


def error_lines(error: Optional[str], limit: int = MAX_ERROR_LINES) -> List[str]:
    if not error:
        return []
    lines = [ln for ln in error.splitlines() if ln.strip()]
    if len(lines) > limit:
        lines = lines[:limit] + ["..."]
    return lines


def render_console(summary: RunSummary, cex_refs: Optional[Dict[str, AssetReference]] = None) -> str:
    lines = [
        f"mode: {summary.mode}",
        f"markets considered: {summary.markets_considered}",
        f"opportunities: {summary.qualified_total}",
    ]
    for reason, n in sorted(summary.qualified.items()):
        lines.append(f"  qualified {reason}: {n}")
    for reason, n in sorted(summary.skipped.items()):
        lines.append(f"  skipped {reason}: {n}")
    lines.append(
        f"orders: submitted={summary.orders_submitted} filled={summary.orders_filled} "
        f"simulated={summary.orders_simulated} rejected={summary.orders_rejected} "
        f"transport_errors={summary.transport_errors} partial_pairs={summary.partial_pairs}"
    )
    for ref in (cex_refs or {}).values():
        lines.append(f"cex ref: {ref.describe()}")
    for rec in summary.opportunities:
        lines.append(f"{rec.quote.ticker}: {rec.verdict.detail}")
        for o in rec.outcomes:
            extra = f" ({o.reason})" if o.reason else ""
            lines.append(f"  {o.intent.side.value.upper()} x{o.intent.count} @ {format_price(o.intent.limit_price)} -> {o.status} {o.order_id}{extra}".rstrip())
    lines.append("result: OK" if summary.ok else f"result: ERROR {summary.error}")
    return "\n".join(lines)


def render_slack(
    summary: Optional[RunSummary],
    mode: str,
    now: Optional[datetime] = None,
    error: Optional[str] = None,
    max_items: int = MAX_HIGHLIGHTS,
) -> str:
    """Slack mrkdwn header for one run. summary may be None when the run failed before scanning."""
    ts = (now or datetime.now(timezone.utc)).isoformat()
    text = f"*Kalshi 15m bot run* `{mode}` `{ts}`"
    if summary is not None:
        text += f"\nOpportunities: {summary.qualified_total}"
        if summary.orders_submitted:
            text += f"\nOrders: {summary.orders_filled + summary.orders_simulated} filled, {summary.orders_rejected} rejected"
            if summary.partial_pairs:
                text += f", {summary.partial_pairs} partial pairs"
    err = error or (summary.error if summary is not None else None)
    if err:
        text += "\nResult: ERROR"
        lines = error_lines(err)
        text += "\n\n*Error Details*"
        for line in lines:
            text += f"\n- {line}"
    else:
        text += "\nResult: OK"
    if summary is not None and summary.decisions:
        text += "\n\n*Highlights*"
        for rec in _pick_highlights(summary, max_items):
            text += "\n" + _highlight(rec)
    return text
