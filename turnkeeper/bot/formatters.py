"""Message text formatters."""

from datetime import datetime
from html import escape

from turnkeeper.db.models import (
    HiatusRecord,
    HiatusSessionSummary,
    HiatusStatus,
    NextReason,
    Participant,
    Session,
    TimestampStatus,
)
from turnkeeper.utils.time_utils import format_relative_time

STATUS_LABELS = {
    TimestampStatus.JUST_STARTED: "🆕 Session just started",
    TimestampStatus.IN_TIME: "✅ In time",
    TimestampStatus.FIRST_REMINDER_SENT: "❕ First reminder sent",
    TimestampStatus.SECOND_REMINDER_SENT: "⚠️ Second reminder sent; soon to be skipped",
    TimestampStatus.OVERDUE: "❌ Overdue; no reply",
    TimestampStatus.MANUALLY_SET: "✍️ Turn set manually",
}

HIATUS_LABELS = {
    HiatusStatus.NO_HIATUS: "☑️ User has no active hiatus",
    HiatusStatus.ACTIVE: "⏳ User has active hiatus",
    HiatusStatus.ACTIVE_INDEFINITE: "⏳ User has active hiatus without end date",
}

REASON_TEXT = {
    NextReason.ADVANCED: "",
    NextReason.SKIPPED: "⏭ The previous turn was skipped.",
    NextReason.REMOVED: "👋 The previous participant left the turn order.",
    NextReason.MANUALLY_SET: "✍️ A moderator set the turn.",
}


def mention(user_id: int, name: str) -> str:
    return f'<a href="tg://user?id={user_id}">{escape(name)}</a>'


def format_date(dt: datetime | None) -> str:
    if dt is None:
        return "never"
    return dt.strftime("%b %d, %Y at %H:%M UTC")


def format_turn_notification(
    session: Session,
    previous: Participant | None,
    reason: NextReason,
    message: str | None = None,
) -> str:
    current = session.current_turn
    lines = [f"🎲 <b>It's your turn, {mention(current.user_id, current.character_name)}!</b>"]

    if previous is None:
        lines.append("A new turn order has started in this chat.")
    elif REASON_TEXT[reason]:
        lines.append(REASON_TEXT[reason])

    if previous is not None:
        lines.append(f"Previous: {escape(previous.character_name)}")

    if message:
        lines.append(f"\n💬 {escape(message)}")

    return "\n".join(lines)


def format_reminder(user_id: int, character_name: str, tier: int, hiatus_active: bool) -> str:
    """Format a reply reminder for the participant holding the turn."""
    who = mention(user_id, character_name)
    if tier == 0:
        text = f"🔔 <b>Reminder</b>\n\n{who}, it's still your turn. Please reply when you can."
    else:
        text = (
            f"🚨 <b>Final reminder</b>\n\n{who}, it's still your turn. "
            "Moderators have been notified and may skip you."
        )

    if hiatus_active:
        text += "\n\n⏳ Your hiatus has been taken into account."
    return text


def format_moderator_warning(
    channel_id: int, user_id: int, character_name: str, hiatus_status: HiatusStatus
) -> str:
    return (
        "⚠️ <b>No reply after the final reminder</b>\n\n"
        f"Chat: <code>{channel_id}</code>\n"
        f"Turn: {mention(user_id, character_name)}\n"
        f"{HIATUS_LABELS[hiatus_status]}\n\n"
        "Skip the turn or finish the session?"
    )


def format_status_update(
    channel_id: int,
    status: TimestampStatus | None,
    hiatus_status: HiatusStatus | None,
) -> str:
    lines = [f"📋 <b>Status update</b> for <code>{channel_id}</code>"]
    if status is not None:
        lines.append(STATUS_LABELS[status])
    if hiatus_status is not None:
        lines.append(HIATUS_LABELS[hiatus_status])
    return "\n".join(lines)


def format_session(session: Session, now: datetime | None = None) -> str:
    """Format a session for /status."""
    lines = ["<b>Turn order</b>\n"]
    for i, participant in enumerate(session.participants):
        marker = "👉" if participant == session.current_turn else "  "
        lines.append(f"{marker} {i}. {escape(participant.character_name)}")

    lines.append("")
    if session.last_advance_at:
        lines.append(
            f"Last turn change: {format_relative_time(session.last_advance_at, now)}"
        )
    lines.append(STATUS_LABELS[session.status])
    lines.append(HIATUS_LABELS[session.hiatus_status])
    return "\n".join(lines)


def format_hiatus_announcement(hiatus: HiatusRecord) -> str:
    lines = [
        f"⏳ <b>Hiatus</b>: {mention(hiatus.user_id, str(hiatus.user_id))}",
        "",
        escape(hiatus.reason),
        "",
    ]
    if hiatus.expires_at:
        lines.append(f"Until {format_date(hiatus.expires_at)}")
    else:
        lines.append("No end date")
    return "\n".join(lines)


def format_hiatus_summary(user_id: int, sessions: list[HiatusSessionSummary]) -> str:
    """Format the welcome-back message sent when a hiatus ends."""
    lines = [f"👋 <b>Welcome back</b>, {mention(user_id, 'friend')}!"]

    if not sessions:
        lines.append("\nNo turns are waiting for you.")
        return "\n".join(lines)

    lines.append(f"\nIt's your turn in {len(sessions)} session{'s' if len(sessions) != 1 else ''}:")
    for summary in sessions:
        line = f"• {escape(summary.character_name)} in <code>{summary.channel_id}</code>"
        if summary.last_advance_at:
            line += f" (since {format_date(summary.last_advance_at)})"
        if summary.overdue:
            line += " ❌ <b>overdue</b>"
        lines.append(line)

    return "\n".join(lines)


def format_help_message() -> str:
    """Format the help message."""
    return """
<b>Turnkeeper Commands 🎲</b>

<b>Sessions:</b>
/session_start &lt;uid&gt;:&lt;name&gt; ... - Start a turn order in this chat
/next [message] - Pass the turn on (current participant only)
/status - Show the turn order
/finish - End the turn order

<b>Moderation:</b>
/skip - Skip the current participant
/turn_add &lt;index&gt; &lt;uid&gt;:&lt;name&gt; - Add a participant
/turn_remove &lt;index&gt; - Remove a participant
/turn_set &lt;index&gt; [silent] - Give the turn to someone
/config &lt;key&gt; [value] - Show or change a setting

<b>Hiatus:</b>
/hiatus &lt;reason&gt; [| until] - Start a hiatus (e.g. <code>/hiatus exams | 2026-11-02</code>)
/hiatus_edit &lt;until&gt; - Change when your hiatus ends
/hiatus_end - End your hiatus now

/help - This message
""".strip()
