"""
Batch processor: list of documents -> run pipeline per document, collect metrics.
Does not duplicate pipeline logic; uses DocumentPipeline.process().
Documents run concurrently as asyncio tasks, at most max_concurrency at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

from core.models import (
    BatchMetrics,
    DocumentJob,
    JudgmentOutcome,
    PipelineFailed,
    PipelineNeedsReview,
    PipelineResult,
    PipelineSuccess,
    retry_attempts_of,
)
from pipeline.document_pipeline import DocumentPipeline

logger = logging.getLogger(__name__)


def _update_metrics(metrics: BatchMetrics, result: PipelineResult | None) -> None:
    """Update counts from a single result. None stands for an item that raised."""
    metrics.total_processed += 1
    if isinstance(result, PipelineSuccess):
        metrics.auto_approved_count += 1
    elif isinstance(result, PipelineNeedsReview):
        metrics.needs_review_count += 1
    elif (
        isinstance(result, PipelineFailed)
        and result.decision is not None
        and result.decision.outcome is JudgmentOutcome.REJECT
    ):
        metrics.rejected_count += 1
    else:
        metrics.failed_count += 1
        return
    decision = result.decision
    if decision is not None:
        metrics.confidence_sum += decision.confidence
        metrics.retry_attempts_sum += decision.retry_attempts
    elif isinstance(result, PipelineNeedsReview):
        metrics.retry_attempts_sum += retry_attempts_of(result.retry_result)


class BatchProcessor:
    """
    Process multiple documents concurrently (or one by one when max_concurrency=1). Collects metrics.
    Injected pipeline; no duplicate pipeline logic.
    """

    def __init__(self, pipeline: DocumentPipeline, max_concurrency: int = 4) -> None:
        self._pipeline = pipeline
        self._max_concurrency = max(1, int(max_concurrency))

    async def _process_one(
        self,
        semaphore: asyncio.Semaphore,
        job: DocumentJob,
        stop_on_first_error: bool,
    ) -> PipelineResult | None:
        async with semaphore:
            logger.info("Processing document=%s pages=%s", job.document_id, len(job.images))
            try:
                return await self._pipeline.process(job.images, job.tenant, trace_id=job.document_id)
            except Exception as e:
                logger.exception("Batch item failed document=%s: %s", job.document_id, e)
                if stop_on_first_error:
                    raise
                return None

    async def process_batch(
        self,
        jobs: Sequence[DocumentJob],
        *,
        stop_on_first_error: bool = False,
    ) -> tuple[list[PipelineResult | None], BatchMetrics]:
        """
        Run pipeline.process() for each job. Returns (results, metrics); results keep input order.
        An item that raises is logged, counted as failed and left as None in results.
        If stop_on_first_error, the first such error is re-raised and the other items are cancelled.
        """
        metrics = BatchMetrics()
        start = time.perf_counter()
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [
            asyncio.ensure_future(self._process_one(semaphore, job, stop_on_first_error))
            for job in jobs
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            # Settle the cancelled siblings before propagating
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        results: list[PipelineResult | None] = list(outcomes)
        for outcome in results:
            _update_metrics(metrics, outcome)
        metrics.total_time_sec = time.perf_counter() - start
        logger.info("Batch done: %s", metrics.to_dict())
        return results, metrics
