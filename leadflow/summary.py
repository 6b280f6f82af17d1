"""
Plain-text stats view.

Shows:
- Today's acquisitions against the daily limit
- Records per stage and follow-up progress
- All-time totals and qualification rate
- The last 7 days
"""

from leadflow.records import STAGES


def qualification_rate(totals: dict) -> float:
    classified = totals.get('qualified', 0) + totals.get('disqualified', 0)
    if not classified:
        return 0.0
    return totals.get('qualified', 0) / classified * 100


def generate_summary_text(status: dict) -> str:
    """
    Render the status dict from LeadManager.get_status() as text.

    Args:
        status: Pipeline status

    Returns:
        Plain text summary
    """
    quota = status.get('quota', {})
    totals = status.get('totals', {})
    stages = status.get('stages', {})
    followups = status.get('followups', {})

    lines = [
        f"LEAD PIPELINE - {quota.get('date', '')}",
        "=" * 50,
        "",
        "TODAY",
        "-" * 30,
        f"• Acquired: {quota.get('acquired', 0)}/{quota.get('limit', 0)}",
        f"• Remaining: {quota.get('remaining', 0)}",
        f"• Errors: {quota.get('errors', 0)}",
        "",
        "PIPELINE",
        "-" * 30,
    ]
    for stage in STAGES:
        lines.append(f"• {stage}: {stages.get(stage, 0)}")
    if status.get('failed_submissions'):
        lines.append(f"• Failed submissions: {status['failed_submissions']}")
    lines.append("")

    if any(followups.values()):
        lines.append("FOLLOW-UPS")
        lines.append("-" * 30)
        lines.append(f"• Awaiting draft: {followups.get('awaiting_draft', 0)}")
        lines.append(f"• Pending review: {followups.get('pending_review', 0)}")
        lines.append(f"• Ready to send: {followups.get('ready_to_send', 0)}")
        lines.append(f"• Sent: {followups.get('sent', 0)}")
        lines.append("")

    lines.append("ALL TIME")
    lines.append("-" * 30)
    lines.append(f"• Acquired: {totals.get('acquired', 0)}")
    lines.append(f"• Qualified: {totals.get('qualified', 0)}")
    lines.append(f"• Disqualified: {totals.get('disqualified', 0)}")
    lines.append(f"• Errors: {totals.get('errors', 0)}")
    lines.append(f"• Qualification rate: {qualification_rate(totals):.1f}%")
    lines.append("")

    recent = status.get('recent_days') or []
    if recent:
        lines.append("LAST 7 DAYS")
        lines.append("-" * 30)
        for day in recent:
            lines.append(
                f"• {day['day']}: {day.get('acquired', 0)} acquired, "
                f"{day.get('qualified', 0)} qualified, {day.get('errors', 0)} errors"
            )
        lines.append("")

    return "\n".join(lines)
