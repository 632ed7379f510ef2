"""Lifecycle configuration management using Pydantic."""

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator

from lifecycle.constants import (
    CONFIG_FILE,
    DEFAULT_ESCALATION_RATE_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS_PER_TIER,
    DEFAULT_MAX_CORRECTIVE_CYCLES,
    DEFAULT_MAX_IN_FLIGHT,
    DEFAULT_REVIEW_DOMAINS,
    DEFAULT_VERIFICATION_TIMEOUT,
    LOGS_DIR,
    STATE_DIR,
    Tier,
)
from lifecycle.exceptions import ConfigurationError


class ProjectConfig(BaseModel):
    """Project identification configuration."""

    name: str = "lifecycle"
    description: str = "Feature lifecycle pipeline orchestrator"
    root: str = "."


class SchedulerConfig(BaseModel):
    """Group dispatch settings."""

    max_in_flight: int = Field(default=DEFAULT_MAX_IN_FLIGHT, ge=1, le=16)
    push_on_finalize: bool = True


class EscalationConfig(BaseModel):
    """Retry and tier escalation settings."""

    max_attempts_per_tier: int = Field(default=DEFAULT_MAX_ATTEMPTS_PER_TIER, ge=1, le=10)
    rate_threshold: float = Field(default=DEFAULT_ESCALATION_RATE_THRESHOLD, ge=0.0, le=1.0)


class ReviewConfig(BaseModel):
    """Review fan-out settings."""

    domains: list[str] = Field(default_factory=lambda: list(DEFAULT_REVIEW_DOMAINS))

    @field_validator("domains")
    @classmethod
    def _unique_domains(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one review domain is required")
        if len(set(value)) != len(value):
            raise ValueError("review domains must be unique")
        return value


class PhasesConfig(BaseModel):
    """Phase controller settings."""

    max_corrective_cycles: int = Field(default=DEFAULT_MAX_CORRECTIVE_CYCLES, ge=0, le=5)


class VerificationConfig(BaseModel):
    """Verifier settings.

    ``commands`` maps a group's verification reference (``compile``, ``test``, ...)
    to a command. References without an entry fall back to the detected stack.
    """

    stack: str | None = None
    commands: dict[str, str] = Field(default_factory=dict)
    timeout: int = Field(default=DEFAULT_VERIFICATION_TIMEOUT, ge=1, le=7200)


class WorkersConfig(BaseModel):
    """Command templates used by subprocess workers, keyed by tier name."""

    commands: dict[str, str] = Field(default_factory=dict)
    timeout: int = Field(default=1800, ge=1, le=14400)

    @field_validator("commands")
    @classmethod
    def _known_tiers(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            tier = Tier.parse(key)
            if tier is Tier.MANUAL:
                raise ValueError("manual tier cannot have a worker command")
        return value


class ReviewersConfig(BaseModel):
    """Command template used by subprocess reviewers."""

    command: str | None = None
    timeout: int = Field(default=900, ge=1, le=7200)


class CatalogConfig(BaseModel):
    """Location of a custom kind catalog."""

    path: str | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="info", pattern="^(debug|info|warn|error)$")
    directory: str = LOGS_DIR
    json_output: bool = True


class StateConfig(BaseModel):
    """Run state persistence."""

    directory: str = STATE_DIR


class LifecycleConfig(BaseModel):
    """Complete lifecycle configuration."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    phases: PhasesConfig = Field(default_factory=PhasesConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    reviewers: ReviewersConfig = Field(default_factory=ReviewersConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "LifecycleConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Defaults to .lifecycle/config.yaml

        Returns:
            LifecycleConfig instance

        Raises:
            ConfigurationError: If the file cannot be parsed or validated
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}", {"error": str(e)}) from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LifecycleConfig":
        """Create configuration from dictionary.

        Raises:
            ConfigurationError: If validation fails
        """
        try:
            return cls(**data)
        except ValueError as e:
            raise ConfigurationError("Invalid lifecycle configuration", {"error": str(e)}) from e

    def save(self, config_path: str | Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Defaults to .lifecycle/config.yaml
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    def worker_commands(self) -> dict[Tier, str]:
        """Worker command templates keyed by parsed tier."""
        return {Tier.parse(name): command for name, command in self.workers.commands.items()}
