"""Builds the orchestrator and scheduler from configuration."""

import logging

from git_agent.config import Config
from git_agent.core.memory import EventLog, StateProjection
from git_agent.core.scheduler import Scheduler, get_schedule
from git_agent.core.workflow import Orchestrator
from git_agent.db.engine import init_db
from git_agent.errors import ValidationError
from git_agent.integrations.git import LocalGitHost
from git_agent.integrations.github import GitHubHost
from git_agent.integrations.llm import OpenAIProducer
from git_agent.integrations.slack import SlackNotifier

logger = logging.getLogger(__name__)


def build_host(config: Config):
    if config.host == "github":
        return GitHubHost(
            token=config.github_token,
            owner=config.github_owner,
            api_url=config.github_api_url,
        )
    if config.host == "local":
        return LocalGitHost(config.workspace_dir)
    raise ValidationError(f"Unknown repository host {config.host!r}; expected github or local")


def build_orchestrator(config: Config) -> Orchestrator:
    init_db(config.db_path).close()
    projection = StateProjection(EventLog(config.db_path))
    logger.debug("Using %s repository host, event log at %s", config.host, config.db_path)
    return Orchestrator(
        projection=projection,
        producer=OpenAIProducer(model_name=config.model, api_key=config.openai_api_key),
        host=build_host(config),
        notifier=SlackNotifier(config.slack_bot_token, config.slack_channel),
        default_extension=config.default_extension,
    )


def build_scheduler(orchestrator: Orchestrator, config: Config) -> Scheduler:
    schedule = get_schedule(config.commit_mode, interval_override=config.tick_interval)
    return Scheduler(orchestrator, schedule, grace_period=config.restart_grace_seconds)
