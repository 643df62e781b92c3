"""
Analyst Runtime Configuration

Loads configuration from environment variables, with defaults.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ConfigurationError
from .mcp.transport import LaunchSpec


DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_RUNTIME_COMMAND = "deno"
DEFAULT_RUNTIME_ARGS = [
    "run",
    "-N",
    "-R=node_modules",
    "-W=node_modules",
    "--node-modules-dir=auto",
    "jsr:@pydantic/mcp-run-python",
    "stdio",
]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class AnalystConfig:
    """Analyst runtime configuration"""

    # Model interface
    anthropic_api_key: str
    base_url: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.1

    # Execution runtime (launched as a subprocess)
    runtime_command: str = DEFAULT_RUNTIME_COMMAND
    runtime_args: List[str] = field(default_factory=lambda: list(DEFAULT_RUNTIME_ARGS))
    runtime_cwd: Optional[str] = None

    # Restart policy
    restart_max_attempts: int = 3
    restart_delay_ms: int = 1000

    # Timeouts (seconds)
    connect_timeout: float = 60.0
    tool_timeout: float = 120.0
    shutdown_drain_timeout: float = 5.0

    # Agent loop
    max_iterations: int = 20

    # Logging
    log_level: str = "WARNING"
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AnalystConfig":
        """Load configuration from environment variables"""
        api_key = os.getenv("ANTHROPIC_API_KEY") or os.getenv("ANALYST_ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY or ANALYST_ANTHROPIC_API_KEY environment variable is required"
            )

        runtime_args = os.getenv("ANALYST_RUNTIME_ARGS")

        return cls(
            anthropic_api_key=api_key,
            base_url=os.getenv("ANTHROPIC_BASE_URL") or None,
            model=os.getenv("ANALYST_MODEL", DEFAULT_MODEL),
            max_tokens=_env_int("ANALYST_MAX_TOKENS", 4096),
            temperature=_env_float("ANALYST_TEMPERATURE", 0.1),
            runtime_command=os.getenv("ANALYST_RUNTIME_COMMAND", DEFAULT_RUNTIME_COMMAND),
            runtime_args=shlex.split(runtime_args) if runtime_args else list(DEFAULT_RUNTIME_ARGS),
            runtime_cwd=os.getenv("ANALYST_RUNTIME_CWD") or None,
            restart_max_attempts=_env_int("ANALYST_RESTART_MAX_ATTEMPTS", 3),
            restart_delay_ms=_env_int("ANALYST_RESTART_DELAY_MS", 1000),
            connect_timeout=_env_float("ANALYST_CONNECT_TIMEOUT", 60.0),
            tool_timeout=_env_float("ANALYST_TOOL_TIMEOUT", 120.0),
            shutdown_drain_timeout=_env_float("ANALYST_SHUTDOWN_DRAIN_TIMEOUT", 5.0),
            max_iterations=_env_int("ANALYST_MAX_ITERATIONS", 20),
            log_level=os.getenv("ANALYST_LOG_LEVEL", "WARNING"),
            log_dir=os.getenv("ANALYST_LOG_DIR") or None,
        )

    def validate(self) -> None:
        """Validate configuration on startup (fail fast if invalid)"""
        if not self.anthropic_api_key:
            raise ConfigurationError("anthropic_api_key is required")

        if self.max_tokens < 1 or self.max_tokens > 100000:
            raise ConfigurationError("max_tokens must be between 1 and 100000")

        if self.temperature < 0 or self.temperature > 1:
            raise ConfigurationError("temperature must be between 0 and 1")

        if not self.runtime_command:
            raise ConfigurationError("runtime_command must not be empty")

        if self.restart_max_attempts < 0:
            raise ConfigurationError("restart_max_attempts must not be negative")

        if self.restart_delay_ms < 0:
            raise ConfigurationError("restart_delay_ms must not be negative")

        for name in ("connect_timeout", "tool_timeout", "shutdown_drain_timeout"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")

        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be at least 1")

    def launch_spec(self) -> LaunchSpec:
        """Launch parameters for the execution runtime subprocess."""
        return LaunchSpec(
            command=self.runtime_command,
            args=list(self.runtime_args),
            cwd=self.runtime_cwd,
        )
