"""Extraction pipeline: bank SMS in, typed extraction result out.

Stages run in order (sender match, field extraction, confidence, account
resolution) on a worker thread so a time budget can be enforced per
message. Every outcome, including a timeout, is returned as a value.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from typing import Iterable

from smsledger.accounts import AccountResolver
from smsledger.categorizer import CategorizationEngine
from smsledger.confidence import calculate_confidence
from smsledger.extractor import build_transaction, extract_fields
from smsledger.models import (
    Account,
    AccountResolution,
    CategorizationResult,
    ExtractedFields,
    ExtractedTransaction,
    ExtractionFailure,
    ExtractionResult,
    ExtractionSuccess,
    FailureReason,
    FieldName,
    InboundMessage,
    PipelineConfig,
)
from smsledger.patterns import PatternRegistry

logger = logging.getLogger(__name__)


class _Cancelled(Exception):
    """Raised inside a worker whose caller has stopped waiting."""


@dataclass
class _Progress:
    """What a worker has achieved so far, read by the caller on timeout."""

    stage: str = "queued"
    confidence: float = 0.0
    details: ExtractedFields = field(default_factory=ExtractedFields)


@dataclass
class ProcessedMessage:
    """One message of a batch with its extraction and category.

    Attributes:
        message: Source message
        extraction: Extraction outcome
        categorization: Category for successful extractions when an engine was given
    """

    message: InboundMessage
    extraction: ExtractionResult
    categorization: CategorizationResult | None = None


@dataclass
class ProcessingStats:
    """Running counters for a pipeline.

    Attributes:
        processed: Messages seen
        succeeded: Successful extractions
        failed: Failure count per reason
        needs_review: Successes scored below the review threshold or with an ambiguous account
        elapsed_ms: Total wall time spent extracting
    """

    processed: int = 0
    succeeded: int = 0
    failed: dict[FailureReason, int] = field(default_factory=dict)
    needs_review: int = 0
    elapsed_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.processed if self.processed else 0.0

    def record(self, result: ExtractionResult, elapsed_ms: float, review_threshold: float) -> None:
        self.processed += 1
        self.elapsed_ms += elapsed_ms
        if result.is_successful:
            self.succeeded += 1
            if result.confidence < review_threshold or result.account_ambiguous:
                self.needs_review += 1
        else:
            self.failed[result.reason] = self.failed.get(result.reason, 0) + 1


class ExtractionPipeline:
    """Turn inbound bank messages into extraction results.

    Example:
        registry = PatternRegistry()
        seed_defaults(registry)
        with ExtractionPipeline(registry) as pipeline:
            result = pipeline.extract(message)
    """

    def __init__(
        self,
        registry: PatternRegistry,
        resolver: AccountResolver | None = None,
        accounts: Iterable[Account] = (),
        config: PipelineConfig | None = None,
    ) -> None:
        self.registry = registry
        self.resolver = resolver or AccountResolver()
        self.accounts = list(accounts)
        self.config = config or PipelineConfig()
        self.stats = ProcessingStats()
        self._stats_lock = threading.Lock()
        # Abandoned workers hold a thread until their next stage boundary,
        # so the stage pool is larger than the batch fan-out.
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers * 2, thread_name_prefix="sms-extract"
        )

    def extract(self, message: InboundMessage) -> ExtractionResult:
        """Extract a transaction from one message within the time budget.

        Args:
            message: Inbound SMS

        Returns:
            ExtractionSuccess, or ExtractionFailure with a typed reason
        """
        start = time.perf_counter()
        progress = _Progress()
        cancel = threading.Event()
        timeout_s = self.config.timeout_ms / 1000

        future = self._executor.submit(self._run_stages, message, progress, cancel)
        try:
            result = future.result(timeout=timeout_s)
        except FutureTimeout:
            cancel.set()
            future.cancel()
            logger.warning(
                "Extraction for %s timed out after %dms during %s",
                message.sender,
                self.config.timeout_ms,
                progress.stage,
            )
            result = ExtractionFailure(
                reason=FailureReason.PROCESSING_TIMEOUT,
                confidence=progress.confidence,
                details=progress.details,
                message=f"Timed out after {self.config.timeout_ms}ms during {progress.stage}",
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        with self._stats_lock:
            self.stats.record(result, elapsed_ms, self.config.review_threshold)
        return result

    def extract_with_retry(self, message: InboundMessage) -> ExtractionResult:
        """Extract, retrying once when the failure is retryable (timeouts)."""
        result = self.extract(message)
        if not result.is_successful and result.reason.retryable:
            logger.info("Retrying extraction for %s after %s", message.sender, result.reason.value)
            result = self.extract(message)
        return result

    def process_batch(
        self, messages: Iterable[InboundMessage], engine: CategorizationEngine | None = None
    ) -> list[ProcessedMessage]:
        """Extract a batch in parallel, then categorize successes one by one.

        Args:
            messages: Messages to process
            engine: Optional categorization engine for successful extractions

        Returns:
            One ProcessedMessage per input message, in input order
        """
        messages = list(messages)
        if not messages:
            return []

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="sms-batch"
        ) as pool:
            extractions = list(pool.map(self.extract, messages))

        processed = []
        for message, extraction in zip(messages, extractions):
            categorization = None
            if engine is not None and extraction.is_successful:
                categorization = engine.categorize(extraction.transaction)
            processed.append(ProcessedMessage(message, extraction, categorization))

        succeeded = sum(1 for item in processed if item.extraction.is_successful)
        logger.info("Processed batch of %d messages, %d succeeded", len(processed), succeeded)
        return processed

    def needs_review(self, result: ExtractionResult) -> bool:
        """Check whether a result should be confirmed by the user.

        Failures, low-confidence successes and successes whose account
        fragment matched several accounts all need a look.
        """
        return (
            not result.is_successful
            or result.confidence < self.config.review_threshold
            or result.account_ambiguous
        )

    def _run_stages(
        self, message: InboundMessage, progress: _Progress, cancel: threading.Event
    ) -> ExtractionResult:
        try:
            return self._extract_stages(message, progress, cancel)
        except _Cancelled:
            return ExtractionFailure(
                FailureReason.PROCESSING_TIMEOUT, progress.confidence, progress.details
            )
        except Exception:
            logger.exception("Unexpected error while extracting message from %s", message.sender)
            return ExtractionFailure(
                reason=FailureReason.INVALID_SMS_FORMAT,
                confidence=progress.confidence,
                details=progress.details,
                message="Unexpected error during extraction",
            )

    @staticmethod
    def _checkpoint(progress: _Progress, cancel: threading.Event, stage: str) -> None:
        if cancel.is_set():
            raise _Cancelled(progress.stage)
        progress.stage = stage

    def _extract_stages(
        self, message: InboundMessage, progress: _Progress, cancel: threading.Event
    ) -> ExtractionResult:
        self._checkpoint(progress, cancel, "sender_match")
        candidates = self.registry.find_candidates(message.sender)
        if not candidates:
            logger.debug("No pattern claims sender %s", message.sender)
            return ExtractionFailure(
                reason=FailureReason.UNKNOWN_BANK_FORMAT,
                message=f"No bank pattern for sender {message.sender}",
            )

        attempts = []
        for pattern in candidates:
            self._checkpoint(progress, cancel, "field_extraction")
            attempts.append(extract_fields(message.body, pattern))

        # Most fields wins; on a tie the earlier registration wins
        _, best = max(enumerate(attempts), key=lambda pair: (pair[1].count, -pair[0]))
        progress.details = best

        self._checkpoint(progress, cancel, "confidence")
        # No amount means no transaction, whatever else matched
        transaction = build_transaction(best, message)
        if transaction is None:
            confidence = calculate_confidence(best, self.config, amount_valid=False)
            return ExtractionFailure(
                reason=FailureReason.AMOUNT_PARSING_FAILED,
                confidence=confidence,
                details=best,
                message="Amount missing or not a valid positive amount",
            )

        confidence = calculate_confidence(best, self.config)
        progress.confidence = confidence

        self._checkpoint(progress, cancel, "account_resolution")
        resolution = self._resolve_account(best, transaction)
        if resolution is not None and resolution.account_id is not None:
            transaction = replace(transaction, account_id=resolution.account_id)

        return ExtractionSuccess(
            transaction=transaction,
            confidence=confidence,
            details=best,
            account_resolution=resolution,
        )

    def _resolve_account(
        self, extracted: ExtractedFields, transaction: ExtractedTransaction
    ) -> AccountResolution | None:
        fragment = extracted.get(FieldName.ACCOUNT)
        if not fragment:
            return None

        bank_name = extracted.pattern.bank_name if extracted.pattern else None
        same_bank = [
            account
            for account in self.accounts
            if bank_name and account.bank_name.lower() == bank_name.lower()
        ]
        resolution = self.resolver.resolve(fragment, same_bank or self.accounts, bank_name=bank_name)
        logger.debug(
            "Account %s for %s resolved as %s",
            fragment,
            transaction.merchant,
            resolution.status.value,
        )
        return resolution

    def close(self) -> None:
        """Stop the worker pool without waiting for abandoned workers."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ["ExtractionPipeline", "ProcessedMessage", "ProcessingStats"]
