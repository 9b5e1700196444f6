"""Audit log assembler.

Renders a run's log entries plus protocol metadata as a plain-text
execution record. Sections appear once each, in order:
PROTOCOL METADATA, EXECUTION CONTEXT, EXECUTION LOG, then a
COMPLETED or HALTED PREMATURELY banner.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

from .catalog import compute_content_hash
from .types import LogEntry, Protocol, RunState, RunStatus

RULE = "=" * 80
THIN_RULE = "-" * 80

DEFAULT_OPERATOR = "Active Operator (Licensed)"

COMPLETED_BANNER = "[✓] SUCCESS: PROTOCOL COMPLETED"
HALTED_BANNER = "[!] ALERT: EXECUTION HALTED PREMATURELY"


def _fmt_time(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return value.isoformat(sep=" ", timespec="seconds")


def _duration_minutes(start: datetime, end: datetime) -> int:
    return max(1, int((end - start).total_seconds() // 60))


def _render_entry(index: int, entry: LogEntry) -> str:
    return "\n".join([
        f"STEP {index}: {entry.title}",
        f"   • Description:   {entry.description or 'N/A'}",
        f"   • Role Required: {entry.role}",
        f"   • Action Taken:  {entry.action}",
        f"   • Timestamp:     {_fmt_time(entry.timestamp)}",
        "   • Status:        VERIFIED",
        THIN_RULE,
    ])


def _render_banner(protocol: Protocol, state: RunState) -> List[str]:
    if state.status == RunStatus.COMPLETED:
        return [
            COMPLETED_BANNER,
            "    All mandatory steps verified and logged.",
            "    Compliance Standard Met.",
        ]
    if state.status == RunStatus.ABANDONED:
        reason = "Run abandoned before the final step."
    else:
        reason = "Report requested before completion."
    remaining = len(protocol.steps) - len(state.completed_step_ids)
    return [
        HALTED_BANNER,
        f"    Reason: {reason}",
        f"    Remaining Steps: {remaining}",
    ]


def assemble_report(
    protocol: Protocol,
    state: RunState,
    session_id: str,
    *,
    operator: str = DEFAULT_OPERATOR,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the audit record for a completed or partial run.

    Args:
        protocol: Protocol the run executed
        state: Run state whose log is rendered (any status)
        session_id: Session identifier printed in the context block
        operator: Operator label printed in the context block
        generated_at: Report time; defaults to now (UTC)

    Returns:
        Report text
    """
    if state.protocol_id != protocol.id:
        raise ValueError(
            f"Run belongs to protocol '{state.protocol_id}', not '{protocol.id}'"
        )

    generated_at = generated_at or datetime.now(timezone.utc)
    started = state.started_at or generated_at
    finished = state.finished_at or generated_at

    lines = [
        RULE,
        "PROTOCOLLY | EXECUTION AUDIT RECORD".center(80).rstrip(),
        RULE,
        "",
        "PROTOCOL METADATA",
        "-----------------",
        f"ID:             {protocol.id.upper()}",
        f"Title:          {protocol.title}",
        f"Version:        {protocol.version}",
        f"Category:       {protocol.category}",
        f"Risk Class:     {protocol.risk_class.value}",
        f"Jurisdiction:   {protocol.jurisdiction}",
        f"Content Hash:   {compute_content_hash(protocol)}",
        "",
        "EXECUTION CONTEXT",
        "-----------------",
        f"Session ID:     {session_id}",
        f"User:           {operator}",
        f"Time Started:   {_fmt_time(started)}",
        f"Time Finished:  {_fmt_time(finished)}",
        f"Duration:       {_duration_minutes(started, finished)} minutes",
        f"Run Status:     {state.status.value}",
        f"Steps Logged:   {len(state.log)} of {len(protocol.steps)}",
        "",
        THIN_RULE,
        "EXECUTION LOG".center(80).rstrip(),
        THIN_RULE,
        "",
    ]

    if state.log:
        lines.extend(_render_entry(i, entry) for i, entry in enumerate(state.log, start=1))
    else:
        lines.append("(no steps completed)")

    lines.append("")
    lines.extend(_render_banner(protocol, state))
    lines.extend([
        "",
        RULE,
        "This document is an immutable record of operational execution.",
        f"Generated: {_fmt_time(generated_at)}",
        RULE,
    ])
    return "\n".join(lines)


def report_filename(protocol: Protocol) -> str:
    """File name for a downloaded report, e.g. ``vendor_onboarding_AUDIT_LOG.txt``."""
    slug = re.sub(r"[^a-z0-9]", "_", protocol.title.lower())
    return f"{slug}_AUDIT_LOG.txt"
