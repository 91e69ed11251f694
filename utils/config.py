"""
Configuration loader: YAML + env overrides.
No hardcoded model names or thresholds in services; everything is injected from here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from core.exceptions import ConfigError

# Hard ceiling on self-correction retries, whatever the configuration says
MAX_CORRECTIONS = 3


def _coerce_bool(s: Any) -> bool:
    if isinstance(s, bool):
        return s
    return (str(s).strip().lower() in ("1", "true", "yes")) if s else False


def _coerce_float(s: Any) -> float:
    if s is None or s == "":
        return 0.0
    try:
        return float(s)
    except (TypeError, ValueError):
        return 0.0


def _coerce_int(s: Any) -> int:
    if s is None or s == "":
        return 0
    try:
        return int(s)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class LLMConfig:
    """LLM endpoint and model configuration."""

    provider: str = "ollama"
    base_url: str = "http://localhost:11434/v1"
    api_key: str = ""
    classification_model: str = "llama3.2-vision"
    extraction_model: str = "llama3.2-vision"
    # Set to run a second, cheaper extraction and reconcile the two
    fast_extraction_model: str = ""
    max_retries: int = 3
    retry_delay_sec: float = 2.0
    timeout_sec: int = 120


@dataclass(frozen=True)
class JudgmentConfig:
    """Thresholds for the judgment decision tree."""

    needs_review_min_confidence: float = 0.5
    auto_approve_min_confidence: float = 0.8
    max_warnings_for_auto_approve: int = 2
    auto_approve_with_warnings: bool = False
    require_consensus_for_auto_approve: bool = True

    @staticmethod
    def preset(name: str) -> JudgmentConfig:
        """default | strict | lenient."""
        key = (name or "default").strip().lower()
        if key not in JUDGMENT_PRESETS:
            raise ConfigError(f"Unknown judgment profile: {name}. Use default, strict, or lenient.")
        return JUDGMENT_PRESETS[key]


DEFAULT_JUDGMENT = JudgmentConfig()
STRICT_JUDGMENT = JudgmentConfig(
    needs_review_min_confidence=0.6,
    auto_approve_min_confidence=0.9,
    max_warnings_for_auto_approve=0,
    auto_approve_with_warnings=False,
    require_consensus_for_auto_approve=True,
)
LENIENT_JUDGMENT = JudgmentConfig(
    needs_review_min_confidence=0.4,
    auto_approve_min_confidence=0.7,
    max_warnings_for_auto_approve=5,
    auto_approve_with_warnings=True,
    require_consensus_for_auto_approve=False,
)
JUDGMENT_PRESETS: dict[str, JudgmentConfig] = {
    "default": DEFAULT_JUDGMENT,
    "strict": STRICT_JUDGMENT,
    "lenient": LENIENT_JUDGMENT,
}


@dataclass(frozen=True)
class RetryConfig:
    """Self-correction loop. max_retries counts extraction attempts, the first one included."""

    enabled: bool = True
    max_retries: int = MAX_CORRECTIONS
    inject_hints: bool = True

    @property
    def effective_max_retries(self) -> int:
        if not self.enabled:
            return 0
        return max(0, min(self.max_retries, MAX_CORRECTIONS))


@dataclass(frozen=True)
class PipelineConfig:
    """Orchestrator gates and concurrency."""

    min_classification_confidence: float = 0.3
    fail_fast_on_unknown: bool = True
    use_reference_examples: bool = True
    example_index_min_confidence: float = 0.9
    max_concurrency: int = 4


@dataclass(frozen=True)
class AppConfig:
    """Immutable application configuration. Built from YAML + env."""

    log_level: str = "INFO"
    example_store_dir: str = ""
    llm: LLMConfig = field(default_factory=LLMConfig)
    judgment: JudgmentConfig = field(default_factory=JudgmentConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    def with_overrides(self, **overrides: Any) -> AppConfig:
        """Return new config with replaced keys (top-level only; nested sections replaced whole)."""
        known = {k: v for k, v in overrides.items() if v is not None and hasattr(self, k)}
        return replace(self, **known)


def _env_override(key: str, default: Any, coerce: type | Any = str) -> Any:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    if coerce is bool:
        return _coerce_bool(raw)
    if coerce is float:
        return _coerce_float(raw)
    if coerce is int:
        return _coerce_int(raw)
    return str(raw).strip()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{key}' must be a mapping")
    return value


def _config_from_dict(data: dict[str, Any]) -> AppConfig:
    """Build AppConfig from nested dict. Env overrides applied in load_config."""
    llm_data = _section(data, "llm")
    judgment_data = _section(data, "judgment")
    retry_data = _section(data, "retry")
    pipeline_data = _section(data, "pipeline")

    judgment = JudgmentConfig.preset(str(judgment_data.get("profile", "default")))
    judgment = JudgmentConfig(
        needs_review_min_confidence=_coerce_float(
            judgment_data.get("needs_review_min_confidence", judgment.needs_review_min_confidence)
        ),
        auto_approve_min_confidence=_coerce_float(
            judgment_data.get("auto_approve_min_confidence", judgment.auto_approve_min_confidence)
        ),
        max_warnings_for_auto_approve=_coerce_int(
            judgment_data.get("max_warnings_for_auto_approve", judgment.max_warnings_for_auto_approve)
        ),
        auto_approve_with_warnings=_coerce_bool(
            judgment_data.get("auto_approve_with_warnings", judgment.auto_approve_with_warnings)
        ),
        require_consensus_for_auto_approve=_coerce_bool(
            judgment_data.get(
                "require_consensus_for_auto_approve", judgment.require_consensus_for_auto_approve
            )
        ),
    )
    if judgment.needs_review_min_confidence > judgment.auto_approve_min_confidence:
        raise ConfigError("needs_review_min_confidence must not exceed auto_approve_min_confidence")

    return AppConfig(
        log_level=str(data.get("log_level", "INFO")),
        example_store_dir=str(data.get("example_store_dir", "") or ""),
        llm=LLMConfig(
            provider=str(llm_data.get("provider", "ollama")),
            base_url=str(llm_data.get("base_url", "http://localhost:11434/v1")),
            api_key=str(llm_data.get("api_key", "")),
            classification_model=str(llm_data.get("classification_model", "llama3.2-vision")),
            extraction_model=str(llm_data.get("extraction_model", "llama3.2-vision")),
            fast_extraction_model=str(llm_data.get("fast_extraction_model", "") or ""),
            max_retries=_coerce_int(llm_data.get("max_retries", 3)),
            retry_delay_sec=_coerce_float(llm_data.get("retry_delay_sec", 2.0)),
            timeout_sec=_coerce_int(llm_data.get("timeout_sec", 120)),
        ),
        judgment=judgment,
        retry=RetryConfig(
            enabled=_coerce_bool(retry_data.get("enabled", True)),
            max_retries=_coerce_int(retry_data.get("max_retries", MAX_CORRECTIONS)),
            inject_hints=_coerce_bool(retry_data.get("inject_hints", True)),
        ),
        pipeline=PipelineConfig(
            min_classification_confidence=_coerce_float(
                pipeline_data.get("min_classification_confidence", 0.3)
            ),
            fail_fast_on_unknown=_coerce_bool(pipeline_data.get("fail_fast_on_unknown", True)),
            use_reference_examples=_coerce_bool(pipeline_data.get("use_reference_examples", True)),
            example_index_min_confidence=_coerce_float(
                pipeline_data.get("example_index_min_confidence", 0.9)
            ),
            max_concurrency=max(1, _coerce_int(pipeline_data.get("max_concurrency", 4))),
        ),
    )


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """
    Load config from YAML file, then apply env overrides.
    Env vars: LLM_PROVIDER, LLM_BASE_URL, LLM_API_KEY, LLM_CLASSIFICATION_MODEL,
    LLM_EXTRACTION_MODEL, LLM_FAST_EXTRACTION_MODEL, LOG_LEVEL, MAX_CONCURRENCY,
    JUDGMENT_PROFILE, RETRY_MAX, EXAMPLE_STORE_DIR.
    """
    path = Path(config_path) if config_path else Path("config.yaml")
    data = _load_yaml(path)
    cfg = _config_from_dict(data)
    # Env overrides (single source for deployment)
    overrides: dict[str, Any] = {}
    if os.getenv("LOG_LEVEL"):
        overrides["log_level"] = os.getenv("LOG_LEVEL")
    if os.getenv("EXAMPLE_STORE_DIR"):
        overrides["example_store_dir"] = os.getenv("EXAMPLE_STORE_DIR")
    llm = cfg.llm
    llm_env = replace(
        llm,
        provider=_env_override("LLM_PROVIDER", llm.provider),
        base_url=_env_override("LLM_BASE_URL", llm.base_url),
        api_key=_env_override("LLM_API_KEY", llm.api_key),
        classification_model=_env_override("LLM_CLASSIFICATION_MODEL", llm.classification_model),
        extraction_model=_env_override("LLM_EXTRACTION_MODEL", llm.extraction_model),
        fast_extraction_model=_env_override("LLM_FAST_EXTRACTION_MODEL", llm.fast_extraction_model),
    )
    if llm_env != llm:
        overrides["llm"] = llm_env
    if os.getenv("JUDGMENT_PROFILE"):
        overrides["judgment"] = JudgmentConfig.preset(os.getenv("JUDGMENT_PROFILE", "default"))
    if os.getenv("RETRY_MAX") is not None:
        overrides["retry"] = replace(cfg.retry, max_retries=_coerce_int(os.getenv("RETRY_MAX")))
    if os.getenv("MAX_CONCURRENCY") is not None:
        overrides["pipeline"] = replace(
            cfg.pipeline, max_concurrency=max(1, _coerce_int(os.getenv("MAX_CONCURRENCY")))
        )
    if not overrides:
        return cfg
    return cfg.with_overrides(**overrides)
