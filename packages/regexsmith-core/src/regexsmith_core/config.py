from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from regexsmith_core.errors import ConfigError

RUNTIMES = ("javascript", "python")
SANDBOX_BACKENDS = ("local", "docker", "modal")


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


def _pick(section: dict, dc: type) -> dict:
    fields = dc.__dataclass_fields__
    return {k: v for k, v in section.items() if k in fields}


@dataclass(frozen=True, slots=True)
class LLMConfig:
    provider: str = "openrouter"
    model: str = "google/gemini-2.5-flash-lite-preview-09-2025"
    code_model: str = "x-ai/grok-code-fast-1"
    api_key_env: str = "OPENROUTER_API_KEY"
    base_url: str | None = None
    temperature: float = 0.0
    max_tokens: int = 4_096


@dataclass(frozen=True, slots=True)
class SandboxConfig:
    backend: str = "local"
    docker_image_python: str = "python:3.12-slim"
    docker_image_javascript: str = "node:22-slim"
    modal_app_name: str = "regexsmith-sandbox"
    auto_stop_minutes: int = 2
    regex_timeout_seconds: int = 10
    code_timeout_seconds: int = 10
    memory_limit_mb: int = 256


@dataclass(frozen=True, slots=True)
class SynthesisConfig:
    max_iterations: int = 5
    history_window: int = 3
    default_runtime: str = "javascript"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    token_budget: int = 250_000
    inactivity_timeout_seconds: float = 3600.0
    grace_period_seconds: float = 300.0
    store: str = "memory"  # memory | sqlite
    sqlite_path: str = ".regexsmith/sessions.db"


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8787
    max_timeout_seconds: int = 30
    default_timeout_seconds: int = 10
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True, slots=True)
class RegexsmithConfig:
    """Top-level configuration, parsed from regexsmith.toml."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_toml(
        cls, path: Path | str = "regexsmith.toml"
    ) -> RegexsmithConfig:
        return cls._from_raw(_load_toml(Path(path)))

    @classmethod
    def load(
        cls, project_dir: Path | str | None = None
    ) -> RegexsmithConfig:
        """Load config with global → project → environment layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.regexsmith/config.toml (global)
        3. regexsmith.toml in the project directory
        4. REGEXSMITH_SANDBOX_BACKEND environment variable
        """
        global_path = Path.home() / ".regexsmith" / "config.toml"
        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )
        merged = _deep_merge(
            _load_toml(global_path),
            _load_toml(project_dir / "regexsmith.toml"),
        )

        backend = os.environ.get("REGEXSMITH_SANDBOX_BACKEND")
        if backend:
            merged = _deep_merge(merged, {"sandbox": {"backend": backend}})

        return cls._from_raw(merged)

    @classmethod
    def _from_raw(cls, raw: dict) -> RegexsmithConfig:
        """Build RegexsmithConfig from a raw TOML dict."""
        sandbox = SandboxConfig(**_pick(raw.get("sandbox", {}), SandboxConfig))
        synthesis = SynthesisConfig(
            **_pick(raw.get("synthesis", {}), SynthesisConfig)
        )

        if sandbox.backend not in SANDBOX_BACKENDS:
            raise ConfigError(
                f"Unknown sandbox backend {sandbox.backend!r}; "
                f"expected one of {', '.join(SANDBOX_BACKENDS)}"
            )
        if synthesis.default_runtime not in RUNTIMES:
            raise ConfigError(
                f"Unknown runtime {synthesis.default_runtime!r}"
            )
        if synthesis.max_iterations < 1:
            raise ConfigError("synthesis.max_iterations must be >= 1")

        return cls(
            llm=LLMConfig(**_pick(raw.get("llm", {}), LLMConfig)),
            sandbox=sandbox,
            synthesis=synthesis,
            session=SessionConfig(
                **_pick(raw.get("session", {}), SessionConfig)
            ),
            server=ServerConfig(**_pick(raw.get("server", {}), ServerConfig)),
        )
