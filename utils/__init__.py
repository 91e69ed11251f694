"""Shared utilities: config, logger, retry, JSON repair, image encoding."""

from utils.config import AppConfig, JudgmentConfig, PipelineConfig, RetryConfig, load_config
from utils.logger import get_logger, log_structured, setup_logging
from utils.retry import with_retry
from utils.json_utils import SafeJsonParser
from utils.image_utils import image_to_data_url, prepare_for_vision

__all__ = [
    "AppConfig",
    "JudgmentConfig",
    "PipelineConfig",
    "RetryConfig",
    "load_config",
    "get_logger",
    "log_structured",
    "setup_logging",
    "with_retry",
    "SafeJsonParser",
    "image_to_data_url",
    "prepare_for_vision",
]
