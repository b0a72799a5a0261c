"""
Configuration loading and validation for Ticket Swarm.

This module handles:
- Loading config.yaml from the working directory
- Environment variable resolution (${VAR} syntax)
- Validation of provider and strategy names
- Default values for every optional field

Config objects are immutable and are passed explicitly to each component.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from ticket_swarm.models import Mode, ProviderKind, StrategyKind


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass(frozen=True)
class ProviderSettings:
    """Per-provider CLI settings for one mode."""
    binary: str                                # CLI binary name or path
    model: Optional[str] = None                # Model passed via --model
    max_turns: Optional[int] = None            # None means no turn concept
    timeout_minutes: float = 10                # Wall-clock bound per invocation
    allowed_tools: tuple[str, ...] = ()        # Claude --allowedTools

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60


@dataclass(frozen=True)
class ModeConfig:
    """Provider selection for one invocation mode."""
    provider: ProviderKind
    claude: ProviderSettings
    codex: ProviderSettings
    fallback_provider: Optional[ProviderKind] = None
    max_rounds: int = 3                        # Only meaningful for debate

    def settings_for(self, kind: ProviderKind) -> ProviderSettings:
        """Get the CLI settings for a provider."""
        if kind is ProviderKind.CLAUDE:
            return self.claude
        return self.codex

    def providers(self) -> list[ProviderKind]:
        """Primary provider followed by the secondary, if a distinct one is set."""
        kinds = [self.provider]
        if self.fallback_provider is not None and self.fallback_provider is not self.provider:
            kinds.append(self.fallback_provider)
        return kinds


# Defaults per mode: (claude model, claude turns, timeout minutes, claude tools)
_MODE_DEFAULTS: dict[Mode, tuple[str, int, float, tuple[str, ...]]] = {
    Mode.EXECUTE: ("haiku", 30, 15, ("Read", "Write", "Edit", "Bash", "Glob", "Grep")),
    Mode.DEBATE: ("sonnet", 15, 10, ("Read", "Glob", "Grep")),
    Mode.EVALUATE: ("sonnet", 5, 5, ("Read", "Glob", "Grep")),
}


def default_mode_config(mode: Mode) -> ModeConfig:
    """Build the default configuration for a mode."""
    model, turns, minutes, tools = _MODE_DEFAULTS[mode]
    return ModeConfig(
        provider=ProviderKind.CLAUDE,
        claude=ProviderSettings(
            binary="claude",
            model=model,
            max_turns=turns,
            timeout_minutes=minutes,
            allowed_tools=tools,
        ),
        codex=ProviderSettings(binary="codex", timeout_minutes=minutes),
    )


@dataclass(frozen=True)
class AIProviderConfig:
    """Strategy plus per-mode provider configuration."""
    strategy: StrategyKind = StrategyKind.SINGLE
    execute: ModeConfig = field(default_factory=lambda: default_mode_config(Mode.EXECUTE))
    debate: ModeConfig = field(default_factory=lambda: default_mode_config(Mode.DEBATE))
    evaluate: ModeConfig = field(default_factory=lambda: default_mode_config(Mode.EVALUATE))

    def for_mode(self, mode: Mode) -> ModeConfig:
        """Get the configuration for an invocation mode."""
        if mode is Mode.EXECUTE:
            return self.execute
        if mode is Mode.DEBATE:
            return self.debate
        return self.evaluate


DEFAULT_DONE_LABEL = "ticket-swarm-done"


@dataclass(frozen=True)
class AgentConfig:
    """Agent run settings."""
    log_dir: str = "./logs"                    # JSONL and per-invocation logs
    execution_retries: int = 1                 # Executor attempts per branch
    complexity_scaling: bool = True            # Raise turn budgets for complex tickets


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline persistence settings."""
    state_dir: str = ".pipeline-state"         # Checkpoint root directory
    done_label: str = DEFAULT_DONE_LABEL       # Label prefix marking shipped versions


@dataclass(frozen=True)
class ServiceConfig:
    """A deployable service the tracker can reference as an affected system."""
    name: str
    repo: str


@dataclass(frozen=True)
class TicketSwarmConfig:
    """
    Root configuration.

    Every field has a default, so TicketSwarmConfig() is a usable config.
    """
    ai_provider: AIProviderConfig = field(default_factory=AIProviderConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    services: dict[str, ServiceConfig] = field(default_factory=dict)
    repo_base_url: str = ""

    @property
    def logs_path(self) -> Path:
        return Path(self.agent.log_dir)

    @property
    def state_path(self) -> Path:
        return Path(self.pipeline.state_dir)

    def mode(self, mode: Mode) -> ModeConfig:
        return self.ai_provider.for_mode(mode)


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _parse_number(value: Any, where: str, kind: type = int) -> Any:
    """Convert a numeric setting, reporting bad values as ConfigError."""
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where} must be a number, got {value!r}")


def _parse_provider_kind(value: Any, where: str) -> ProviderKind:
    try:
        return ProviderKind.parse(str(value))
    except ValueError as e:
        raise ConfigError(f"{where}: {e}")


def _parse_tools(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    """Accept either a comma-separated string or a list of tool names."""
    if value is None:
        return default
    if isinstance(value, str):
        return tuple(t.strip() for t in value.split(",") if t.strip())
    return tuple(str(t) for t in value)


def _parse_provider_settings(
    data: dict[str, Any], default: ProviderSettings, where: str
) -> ProviderSettings:
    """Parse per-provider settings from dict."""
    max_turns = data.get("max_turns", default.max_turns)
    return ProviderSettings(
        binary=data.get("binary", default.binary),
        model=data.get("model", default.model),
        max_turns=_parse_number(max_turns, f"{where}.max_turns") if max_turns is not None else None,
        timeout_minutes=_parse_number(
            data.get("timeout_minutes", default.timeout_minutes), f"{where}.timeout_minutes", float
        ),
        allowed_tools=_parse_tools(data.get("allowed_tools"), default.allowed_tools),
    )


def _parse_mode_config(mode: Mode, data: dict[str, Any]) -> ModeConfig:
    """Parse the configuration for one mode from dict."""
    default = default_mode_config(mode)
    where = f"ai_provider.{mode.value}"

    fallback = data.get("fallback_provider")
    max_rounds = _parse_number(data.get("max_rounds", default.max_rounds), f"{where}.max_rounds")
    if max_rounds < 1:
        raise ConfigError(f"{where}.max_rounds must be at least 1")

    return ModeConfig(
        provider=_parse_provider_kind(data.get("provider", default.provider.value), where),
        fallback_provider=_parse_provider_kind(fallback, where) if fallback else None,
        claude=_parse_provider_settings(data.get("claude") or {}, default.claude, f"{where}.claude"),
        codex=_parse_provider_settings(data.get("codex") or {}, default.codex, f"{where}.codex"),
        max_rounds=max_rounds,
    )


def _parse_ai_provider_config(data: dict[str, Any]) -> AIProviderConfig:
    """Parse strategy and per-mode provider configuration from dict."""
    try:
        strategy = StrategyKind.parse(str(data.get("strategy", "single")))
    except ValueError as e:
        raise ConfigError(str(e))

    return AIProviderConfig(
        strategy=strategy,
        execute=_parse_mode_config(Mode.EXECUTE, data.get("execute") or {}),
        debate=_parse_mode_config(Mode.DEBATE, data.get("debate") or {}),
        evaluate=_parse_mode_config(Mode.EVALUATE, data.get("evaluate") or {}),
    )


def _parse_agent_config(data: dict[str, Any]) -> AgentConfig:
    """Parse agent configuration from dict."""
    retries = _parse_number(data.get("execution_retries", 1), "agent.execution_retries")
    return AgentConfig(
        log_dir=data.get("log_dir", "./logs"),
        execution_retries=max(1, retries),
        complexity_scaling=bool(data.get("complexity_scaling", True)),
    )


def _parse_pipeline_config(data: dict[str, Any]) -> PipelineConfig:
    """Parse pipeline configuration from dict."""
    return PipelineConfig(
        state_dir=data.get("state_dir", ".pipeline-state"),
        done_label=data.get("done_label", DEFAULT_DONE_LABEL),
    )


def _parse_services(data: dict[str, Any]) -> dict[str, ServiceConfig]:
    """Parse the service registry from dict."""
    services: dict[str, ServiceConfig] = {}
    for key, entry in data.items():
        if not isinstance(entry, dict) or not entry.get("repo"):
            raise ConfigError(f"services.{key}: 'repo' is required")
        services[key] = ServiceConfig(name=entry.get("name", key), repo=entry["repo"])
    return services


def config_from_dict(data: dict[str, Any]) -> TicketSwarmConfig:
    """
    Build a configuration from an already-parsed mapping.

    Environment variables are resolved before parsing.

    Raises:
        ConfigError: If a section is invalid.
    """
    data = _resolve_env_vars(data or {})
    return TicketSwarmConfig(
        ai_provider=_parse_ai_provider_config(data.get("ai_provider") or {}),
        agent=_parse_agent_config(data.get("agent") or {}),
        pipeline=_parse_pipeline_config(data.get("pipeline") or {}),
        services=_parse_services(data.get("services") or {}),
        repo_base_url=data.get("repo_base_url", ""),
    )


def load_config(config_path: Optional[str] = None) -> TicketSwarmConfig:
    """
    Load configuration from config.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for config.yaml in current directory.

    Returns:
        TicketSwarmConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    if config_path is None:
        config_path = "config.yaml"

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return config_from_dict(raw_data)
