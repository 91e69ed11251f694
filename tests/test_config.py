"""
Unit tests for configuration: YAML sections, env overrides, judgment profiles and validation.
"""
from __future__ import annotations

import pytest

from core.exceptions import ConfigError
from utils.config import (
    DEFAULT_JUDGMENT,
    LENIENT_JUDGMENT,
    MAX_CORRECTIONS,
    STRICT_JUDGMENT,
    AppConfig,
    JudgmentConfig,
    RetryConfig,
    load_config,
)

_ENV_KEYS = (
    "LOG_LEVEL",
    "EXAMPLE_STORE_DIR",
    "LLM_PROVIDER",
    "LLM_BASE_URL",
    "LLM_API_KEY",
    "LLM_CLASSIFICATION_MODEL",
    "LLM_EXTRACTION_MODEL",
    "LLM_FAST_EXTRACTION_MODEL",
    "JUDGMENT_PROFILE",
    "RETRY_MAX",
    "MAX_CONCURRENCY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_missing_file_gives_defaults(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    cfg = load_config()
    assert cfg == AppConfig()
    assert cfg.judgment == DEFAULT_JUDGMENT
    assert cfg.retry.max_retries == MAX_CORRECTIONS


def test_yaml_sections_loaded(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        """
log_level: DEBUG
llm:
  provider: openai
  extraction_model: gpt-4o
  fast_extraction_model: gpt-4o-mini
  timeout_sec: 30
judgment:
  profile: strict
  max_warnings_for_auto_approve: 1
retry:
  max_retries: 2
  inject_hints: false
pipeline:
  max_concurrency: 0
  min_classification_confidence: 0.4
""",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.log_level == "DEBUG"
    assert cfg.llm.provider == "openai"
    assert cfg.llm.fast_extraction_model == "gpt-4o-mini"
    assert cfg.llm.timeout_sec == 30
    assert cfg.judgment.auto_approve_min_confidence == STRICT_JUDGMENT.auto_approve_min_confidence
    assert cfg.judgment.max_warnings_for_auto_approve == 1
    assert cfg.retry == RetryConfig(enabled=True, max_retries=2, inject_hints=False)
    assert cfg.pipeline.max_concurrency == 1
    assert cfg.pipeline.min_classification_confidence == 0.4


def test_env_overrides_yaml(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("llm:\n  provider: ollama\n", encoding="utf-8")
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("JUDGMENT_PROFILE", "lenient")
    monkeypatch.setenv("RETRY_MAX", "2")
    monkeypatch.setenv("MAX_CONCURRENCY", "8")
    cfg = load_config(path)
    assert cfg.llm.provider == "openai"
    assert cfg.llm.api_key == "sk-test"
    assert cfg.judgment == LENIENT_JUDGMENT
    assert cfg.retry.max_retries == 2
    assert cfg.pipeline.max_concurrency == 8


def test_invalid_yaml_raises(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("llm: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_section_must_be_mapping(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("retry: 3\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_thresholds_must_be_ordered(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "judgment:\n  needs_review_min_confidence: 0.9\n  auto_approve_min_confidence: 0.8\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError):
        load_config(path)


def test_judgment_presets() -> None:
    assert JudgmentConfig.preset("Strict") is STRICT_JUDGMENT
    assert JudgmentConfig.preset("") is DEFAULT_JUDGMENT
    with pytest.raises(ConfigError):
        JudgmentConfig.preset("reckless")
    assert STRICT_JUDGMENT.auto_approve_min_confidence > DEFAULT_JUDGMENT.auto_approve_min_confidence
    assert LENIENT_JUDGMENT.auto_approve_with_warnings


def test_retry_ceiling() -> None:
    assert RetryConfig(max_retries=10).effective_max_retries == MAX_CORRECTIONS
    assert RetryConfig(enabled=False).effective_max_retries == 0


def test_with_overrides_ignores_unknown_keys() -> None:
    cfg = AppConfig().with_overrides(log_level="WARNING", nonsense=1, retry=None)
    assert cfg.log_level == "WARNING"
    assert cfg.retry == RetryConfig()
