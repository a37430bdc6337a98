"""Tests for Slack notifications."""

from unittest.mock import MagicMock, patch

import pytest

from git_agent.integrations import slack as slack_mod
from git_agent.integrations.slack import SlackError, SlackNotifier


class TestSendMessage:
    def test_requires_token(self):
        with pytest.raises(SlackError):
            slack_mod.send_message(None, "#dev", "hello")

    def test_posts_message(self):
        client = MagicMock()
        client.chat_postMessage.return_value = {"channel": "C123", "ts": "1700000000.0001"}

        with patch.object(slack_mod, "get_client", return_value=client):
            message = slack_mod.send_message("xoxb-test", "#dev", "hello", blocks=[{"type": "divider"}])

        assert message.channel == "C123"
        assert message.ts == "1700000000.0001"
        client.chat_postMessage.assert_called_once_with(channel="#dev", text="hello", blocks=[{"type": "divider"}])

    def test_no_client_without_token(self):
        assert slack_mod.get_client("") is None


class TestFormatters:
    def test_commit(self):
        text, blocks = slack_mod.format_commit(
            {"message": "feat: implement X", "path": "src/x.js", "task": "X", "repository": "todo-app"}
        )
        assert "todo-app" in text
        fields = [f["text"] for f in blocks[1]["fields"]]
        assert "*File*\n`src/x.js`" in fields
        assert "*Commit Message*\nfeat: implement X" in fields

    def test_task_completed_status(self):
        _, blocks = slack_mod.format_task_completed({"task": "X", "remainingTasks": 0, "repository": "r"})
        assert "*Status*\nProject Complete! :tada:" in [f["text"] for f in blocks[1]["fields"]]

        _, blocks = slack_mod.format_task_completed({"task": "X", "remainingTasks": 2, "repository": "r"})
        assert "*Status*\nIn Progress" in [f["text"] for f in blocks[1]["fields"]]

    def test_project_started_without_repository(self):
        text, blocks = slack_mod.format_project_started({"projectName": "Todo App", "taskCount": 3})
        assert "Todo App" in text
        assert "*Repository*\nNot created yet" in [f["text"] for f in blocks[1]["fields"]]

    def test_error_defaults(self):
        _, blocks = slack_mod.format_error({})
        fields = [f["text"] for f in blocks[1]["fields"]]
        assert "*Error Message*\nUnknown error" in fields
        assert "*Context*\nNo context provided" in fields


class TestSlackNotifier:
    def test_disabled_without_channel(self):
        notifier = SlackNotifier("xoxb-test", None)
        assert not notifier.enabled
        with patch.object(slack_mod, "send_message") as send:
            notifier.notify("commit", {"repository": "r"})
        send.assert_not_called()

    def test_sends_formatted_event(self):
        notifier = SlackNotifier("xoxb-test", "#dev")
        with patch.object(slack_mod, "send_message") as send:
            notifier.notify("project_completed", {"repository": "todo-app"})

        args, kwargs = send.call_args
        assert args[:2] == ("xoxb-test", "#dev")
        assert "todo-app" in args[2]
        assert kwargs["blocks"][0]["type"] == "section"

    def test_unknown_event_is_dropped(self):
        notifier = SlackNotifier("xoxb-test", "#dev")
        with patch.object(slack_mod, "send_message") as send:
            notifier.notify("something_else", {})
        send.assert_not_called()

    def test_failures_are_swallowed(self):
        notifier = SlackNotifier("xoxb-test", "#dev")
        with patch.object(slack_mod, "send_message", side_effect=SlackError("channel_not_found")):
            notifier.notify("error", {"error": "boom"})
