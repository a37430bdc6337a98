"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".git_agent" / "events.db")
    host: str = "local"
    workspace_dir: Path = field(default_factory=lambda: Path.home() / ".git_agent" / "repos")
    github_token: str | None = None
    github_owner: str | None = None
    github_api_url: str = "https://api.github.com"
    openai_api_key: str | None = None
    model: str = "gpt-4o-mini"
    slack_bot_token: str | None = None
    slack_channel: str | None = None
    commit_mode: str = "development"
    tick_interval: float | None = None
    restart_grace_seconds: float = 1.0
    default_extension: str = "js"
    cron_trigger_secret: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("GA_DB_PATH"):
            config.db_path = Path(db)

        if workspace := os.environ.get("GA_WORKSPACE_DIR"):
            config.workspace_dir = Path(workspace)

        config.github_token = os.environ.get("GITHUB_TOKEN", "").strip() or None
        config.github_owner = os.environ.get("GA_GITHUB_OWNER") or None

        # GitHub when a token is available, unless explicitly overridden
        config.host = os.environ.get("GA_HOST") or ("github" if config.github_token else "local")

        if api_url := os.environ.get("GA_GITHUB_API_URL"):
            config.github_api_url = api_url.rstrip("/")

        config.openai_api_key = os.environ.get("OPENAI_API_KEY") or None

        if model := os.environ.get("GA_MODEL"):
            config.model = model

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("GA_SLACK_CHANNEL")

        if mode := os.environ.get("COMMIT_MODE"):
            config.commit_mode = mode

        if interval := os.environ.get("GA_TICK_INTERVAL"):
            config.tick_interval = float(interval)

        if grace := os.environ.get("GA_RESTART_GRACE"):
            config.restart_grace_seconds = float(grace)

        if ext := os.environ.get("GA_DEFAULT_EXTENSION"):
            config.default_extension = ext.lstrip(".")

        config.cron_trigger_secret = os.environ.get("GA_CRON_TRIGGER_SECRET") or None

        if level := os.environ.get("GA_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
