"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _state_dir() -> Path:
    return Path.home() / ".llm_manager"


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: _state_dir() / "queue.db")
    log_file: Path = field(default_factory=lambda: _state_dir() / "daemon.log")
    completions_log: Path = field(default_factory=lambda: _state_dir() / "completions.log")
    pid_file: Path = field(default_factory=lambda: _state_dir() / "daemon.pid")
    workdir: Path | None = None
    max_retries: int = 3
    task_timeout: float | None = 300.0
    poll_interval: float = 5.0
    max_workers: int | None = None
    retry_delay: float = 1.0
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("LLM_MANAGER_DB_PATH"):
            config.db_path = Path(db)

        if log_file := os.environ.get("LLM_MANAGER_LOG_FILE"):
            config.log_file = Path(log_file)

        if completions := os.environ.get("LLM_MANAGER_COMPLETIONS_LOG"):
            config.completions_log = Path(completions)

        if pid_file := os.environ.get("LLM_MANAGER_PID_FILE"):
            config.pid_file = Path(pid_file)

        if workdir := os.environ.get("LLM_MANAGER_WORKDIR"):
            config.workdir = Path(workdir)

        if retries := os.environ.get("LLM_MANAGER_MAX_RETRIES"):
            config.max_retries = max(1, int(retries))

        if timeout := os.environ.get("LLM_MANAGER_TASK_TIMEOUT"):
            # 0 disables the deadline
            config.task_timeout = float(timeout) or None

        if interval := os.environ.get("LLM_MANAGER_POLL_INTERVAL"):
            config.poll_interval = float(interval)

        if workers := os.environ.get("LLM_MANAGER_MAX_WORKERS"):
            config.max_workers = int(workers) or None

        if delay := os.environ.get("LLM_MANAGER_RETRY_DELAY"):
            config.retry_delay = float(delay)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("LLM_MANAGER_SLACK_CHANNEL")

        return config


def get_config() -> Config:
    return Config.from_env()
