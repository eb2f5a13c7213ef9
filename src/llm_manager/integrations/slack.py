"""Slack delivery for task completion notifications."""

STATUS_EMOJI = {
    "pending": ":white_circle:",
    "processing": ":large_blue_circle:",
    "done": ":white_check_mark:",
    "failed": ":x:",
}


class SlackError(Exception):
    """Raised when a notification cannot be delivered to Slack."""


def post_notification(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> str:
    """Post ``text`` (and optional blocks) to ``channel``. Returns the message ts."""
    if not token:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    from slack_sdk import WebClient
    from slack_sdk.errors import SlackApiError

    try:
        response = WebClient(token=token).chat_postMessage(
            channel=channel, text=text, blocks=blocks
        )
    except SlackApiError as e:
        raise SlackError(f"Slack rejected the message: {e.response.get('error')}") from e
    return response["ts"]


def format_task_notification(
    task_id: str,
    description: str,
    status: str,
    backend: str | None = None,
) -> list[dict]:
    """One mrkdwn section: status emoji, task id, truncated description, backend."""
    emoji = STATUS_EMOJI.get(status, ":grey_question:")
    short = description if len(description) <= 80 else description[:77] + "..."
    via = f" | Backend: {backend}" if backend else ""
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{emoji} *Task {status}* (`{task_id}`)\n{short}{via}",
            },
        }
    ]
