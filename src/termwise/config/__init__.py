"""Configuration — Pydantic models for termwise settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class TerminalConfig(BaseModel):
    """Terminal session manager configuration."""

    shell: str | None = Field(
        default=None,
        description="Shell to spawn in real PTY sessions. Defaults to $SHELL, then bash.",
    )
    default_cols: int = Field(default=80, gt=0)
    default_rows: int = Field(default=24, gt=0)
    max_sessions: int = Field(default=32, gt=0)
    output_window_chars: int = Field(
        default=1000, gt=0, description="Sliding window of recent output kept per session"
    )
    command_history: int = Field(
        default=10, gt=0, description="Number of recent commands kept per session"
    )
    tap_queue_size: int = Field(
        default=256,
        gt=0,
        description="Chunks buffered for the learning tap before new ones are dropped",
    )
    force_demo: bool = Field(
        default=False, description="Always use the simulated backend, even if a PTY is available"
    )


class MemoryConfig(BaseModel):
    """Error pattern memory configuration."""

    enabled: bool = Field(default=True)
    data_path: str = Field(default="~/.termwise/memory/error-patterns.json")
    max_patterns: int = Field(default=1000, gt=0)
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    error_timeout: float = Field(
        default=300.0, gt=0, description="Seconds an unresolved error waits for a fix"
    )
    fix_capture_window: int = Field(
        default=10,
        gt=0,
        description="Non-trivial output chunks after an error that may carry its fix",
    )
    min_fix_length: int = Field(default=10, gt=0)


class DoctorConfig(BaseModel):
    """Error doctor configuration.

    The AI tier tries a local assistant CLI first, then a hosted model
    through litellm (provider-prefix model names, API keys read from the
    environment by litellm).
    """

    enabled: bool = Field(default=True, description="Environment-level enable flag")
    cli_command: str | None = Field(
        default="claude", description="Local assistant CLI; None disables the CLI tier"
    )
    cli_args: list[str] = Field(default_factory=lambda: ["--print"])
    cli_timeout: float = Field(default=30.0, gt=0)
    api_model: str | None = Field(
        default="openai/gpt-4o-mini", description="Hosted model (litellm format); None disables it"
    )
    api_timeout: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=1000, gt=0)


class TermwiseConfig(BaseModel):
    """Top-level termwise configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    doctor: DoctorConfig = Field(default_factory=DoctorConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermwiseConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMWISE_SHELL         - Shell for real PTY sessions
            TERMWISE_FORCE_DEMO    - "1"/"true" forces the simulated backend
            TERMWISE_MEMORY_PATH   - Pattern store location
            ENABLE_ERROR_DOCTOR    - "false" disables the error doctor
            TERMWISE_CLI_COMMAND   - Local assistant CLI ("" disables it)
            TERMWISE_CLI_TIMEOUT   - Seconds before the CLI call is killed
            TERMWISE_DOCTOR_MODEL  - Hosted model in litellm format ("" disables it)
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}
        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        memory = config_data.get("memory", {})
        doctor = config_data.get("doctor", {})

        env_shell = os.environ.get("TERMWISE_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        env_force_demo = os.environ.get("TERMWISE_FORCE_DEMO")
        if env_force_demo:
            terminal["force_demo"] = _truthy(env_force_demo)

        env_memory_path = os.environ.get("TERMWISE_MEMORY_PATH")
        if env_memory_path:
            memory["data_path"] = env_memory_path

        env_doctor = os.environ.get("ENABLE_ERROR_DOCTOR")
        if env_doctor is not None:
            doctor["enabled"] = env_doctor.strip().lower() != "false"

        env_cli = os.environ.get("TERMWISE_CLI_COMMAND")
        if env_cli is not None:
            doctor["cli_command"] = env_cli or None

        env_cli_timeout = os.environ.get("TERMWISE_CLI_TIMEOUT")
        if env_cli_timeout:
            doctor["cli_timeout"] = float(env_cli_timeout)

        env_model = os.environ.get("TERMWISE_DOCTOR_MODEL")
        if env_model is not None:
            doctor["api_model"] = env_model or None

        config_data["terminal"] = terminal
        config_data["memory"] = memory
        config_data["doctor"] = doctor
        return cls.model_validate(config_data)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
