from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TARGETS: tuple[str, ...] = (
    "llama-3.3-70b-versatile",
    "qwen-2.5-72b-instruct",
    "llama-3.1-8b-instant",
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: int = 60
    max_operations: int = 20

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        return cls(
            window_seconds=max(1, _env_int("MESA_RATE_LIMIT_WINDOW_SECONDS", cls.window_seconds)),
            max_operations=max(1, _env_int("MESA_RATE_LIMIT_MAX", cls.max_operations)),
        )


@dataclass(frozen=True)
class InvokerConfig:
    targets: tuple[str, ...] = DEFAULT_TARGETS
    min_delay_seconds: float = 0.0

    @classmethod
    def from_env(cls) -> "InvokerConfig":
        raw_targets = os.getenv("MESA_MODEL_TARGETS", "")
        targets = tuple(t.strip() for t in raw_targets.split(",") if t.strip()) or DEFAULT_TARGETS
        return cls(
            targets=targets,
            min_delay_seconds=max(0.0, _env_float("MESA_MODEL_MIN_DELAY_SECONDS", cls.min_delay_seconds)),
        )


@dataclass(frozen=True)
class SessionConfig:
    history_limit: int = 40
    max_continuation_depth: int = 1
    max_model_calls: int = 8
    image_width: int = 768
    image_height: int = 512
    image_seed_max: int = 9999
    auto_start_rounds: bool = True
    ranking_attribute: str = "DESTREZA"
    default_label: str = "Jogador"

    @classmethod
    def from_env(cls) -> "SessionConfig":
        return cls(
            history_limit=max(1, _env_int("MESA_HISTORY_LIMIT", cls.history_limit)),
            max_continuation_depth=max(0, _env_int("MESA_MAX_CONTINUATION_DEPTH", cls.max_continuation_depth)),
            max_model_calls=max(1, _env_int("MESA_MAX_MODEL_CALLS", cls.max_model_calls)),
            image_width=_env_int("MESA_IMAGE_WIDTH", cls.image_width),
            image_height=_env_int("MESA_IMAGE_HEIGHT", cls.image_height),
            auto_start_rounds=_env_bool("MESA_AUTO_START_ROUNDS", cls.auto_start_rounds),
            ranking_attribute=os.getenv("MESA_RANKING_ATTRIBUTE", cls.ranking_attribute),
        )


@dataclass(frozen=True)
class ProviderConfig:
    base_url: str = "https://api.groq.com/openai"
    api_key: str = ""
    timeout: float = 120.0
    temperature: float = 0.8

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        return cls(
            base_url=os.getenv("MESA_PROVIDER_URL", cls.base_url),
            api_key=os.getenv("MESA_PROVIDER_API_KEY", cls.api_key),
            timeout=_env_float("MESA_PROVIDER_TIMEOUT", cls.timeout),
            temperature=_env_float("MESA_PROVIDER_TEMPERATURE", cls.temperature),
        )
