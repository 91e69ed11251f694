"""Pipeline: single-document orchestration and batch processing."""

from pipeline.document_pipeline import DocumentPipeline, StepTrail
from pipeline.batch_processor import BatchProcessor

__all__ = [
    "DocumentPipeline",
    "StepTrail",
    "BatchProcessor",
]
