"""Slack Web API integration."""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    from slack_sdk.errors import SlackApiError

    try:
        response = client.chat_postMessage(
            channel=channel,
            text=text,
            blocks=blocks,
        )
    except SlackApiError as e:
        raise SlackError(f"Slack API error: {e.response.get('error', e)}") from e

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _fields(pairs: list[tuple[str, Any]]) -> dict:
    return {
        "type": "section",
        "fields": [{"type": "mrkdwn", "text": f"*{label}*\n{value}"} for label, value in pairs],
    }


def format_project_started(payload: dict) -> tuple[str, list[dict]]:
    name = payload.get("projectName", "Unknown")
    repo = payload.get("repository") or {}
    text = f":dart: New project started: *{name}*"
    repo_text = f"{repo.get('name')} ({repo.get('url')})" if repo else "Not created yet"
    return text, [
        _section(text),
        _fields(
            [
                ("Complexity", payload.get("complexity", "")),
                ("Tasks", payload.get("taskCount", 0)),
                ("Tech Stack", ", ".join(payload.get("techStack", [])) or "-"),
                ("Repository", repo_text),
            ]
        ),
    ]


def format_commit(payload: dict) -> tuple[str, list[dict]]:
    text = f":rocket: New code committed to *{payload.get('repository', 'unknown')}*"
    return text, [
        _section(text),
        _fields(
            [
                ("Task", payload.get("task") or "Unknown"),
                ("File", f"`{payload.get('path', '')}`"),
                ("Commit Message", payload.get("message", "")),
            ]
        ),
    ]


def format_task_completed(payload: dict) -> tuple[str, list[dict]]:
    remaining = payload.get("remainingTasks", 0)
    text = f":white_check_mark: Task completed: *{payload.get('task', '')}*"
    status = "In Progress" if remaining > 0 else "Project Complete! :tada:"
    return text, [
        _section(text),
        _fields(
            [
                ("Remaining Tasks", remaining),
                ("Repository", payload.get("repository", "")),
                ("Status", status),
            ]
        ),
    ]


def format_project_completed(payload: dict) -> tuple[str, list[dict]]:
    text = f":tada: Project completed in *{payload.get('repository') or 'unknown'}*"
    return text, [_section(text)]


def format_error(payload: dict) -> tuple[str, list[dict]]:
    text = ":x: Error occurred during development"
    return text, [
        _section(text),
        _fields(
            [
                ("Error Message", payload.get("error") or "Unknown error"),
                ("Context", payload.get("context") or "No context provided"),
                ("Repository", payload.get("repository") or "Unknown"),
            ]
        ),
    ]


FORMATTERS = {
    "project_started": format_project_started,
    "commit": format_commit,
    "task_completed": format_task_completed,
    "project_completed": format_project_completed,
    "error": format_error,
}


class SlackNotifier:
    """Posts workflow events to a Slack channel. Never raises."""

    def __init__(self, token: str | None, channel: str | None):
        self.token = token
        self.channel = channel

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.channel)

    def notify(self, event_kind: str, payload: dict[str, Any]) -> None:
        if not self.enabled:
            logger.debug("Slack notifications disabled, dropping %s", event_kind)
            return
        formatter = FORMATTERS.get(event_kind)
        if formatter is None:
            logger.debug("No Slack format for %s", event_kind)
            return
        text, blocks = formatter(payload)
        try:
            send_message(self.token, self.channel, text, blocks=blocks)
        except Exception:
            logger.warning("Failed to send Slack notification for %s", event_kind, exc_info=True)
