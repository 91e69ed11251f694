"""Pipeline services: classification, extraction, self-correction, registry, example store."""

from services.classification_service import ClassificationService, resolve_direction
from services.extraction_service import ExtractionService
from services.retry_service import FeedbackPromptBuilder, RetryController
from services.registry_service import InMemoryBusinessRegistry, RegistryLookupService
from services.example_store import InMemoryVendorExampleStore, JsonFileVendorExampleStore

__all__ = [
    "ClassificationService",
    "resolve_direction",
    "ExtractionService",
    "FeedbackPromptBuilder",
    "RetryController",
    "InMemoryBusinessRegistry",
    "RegistryLookupService",
    "InMemoryVendorExampleStore",
    "JsonFileVendorExampleStore",
]
