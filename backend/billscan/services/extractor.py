"""
Bill extraction orchestrator.

Runs the extraction strategies in priority order over emails and documents
and hands all candidates of a message to deduplication.
"""

import dataclasses
import logging
import threading
from typing import List, Optional

from billscan.config import settings
from billscan.models.bill import CandidateBill, ExtractionResult
from billscan.models.context import DocumentContext, EmailContext
from billscan.services.deduplication import deduplicate
from billscan.services.errors import NoMatchingStrategy
from billscan.services.field_extractor import FieldExtractor
from billscan.services.language import LanguageDetector
from billscan.services.patterns import PatternRegistry
from billscan.services.pdf_text import PdfTextService
from billscan.services.strategies import (
    ExtractionStrategy,
    PatternStrategy,
    RegexHeuristicStrategy,
    StemPatternStrategy,
)
from billscan.utils.stemming import StemIndex, get_default_stem_index

logger = logging.getLogger(__name__)


class ExtractionEngine:
    """
    Shared read-only state of the extraction pipeline.

    Constructed once and passed to every strategy; safe to share between
    threads since nothing in it changes after construction.
    """

    def __init__(
        self,
        stem_index: Optional[StemIndex] = None,
        registry: Optional[PatternRegistry] = None,
        detector: Optional[LanguageDetector] = None
    ):
        self.stem_index = stem_index or get_default_stem_index()
        self.registry = registry or PatternRegistry()
        self.detector = detector or LanguageDetector()
        self.field_extractor = FieldExtractor(self.stem_index)


_default_engine: Optional[ExtractionEngine] = None
_default_engine_lock = threading.Lock()


def get_extraction_engine() -> ExtractionEngine:
    """Process-wide engine, built at most once."""
    global _default_engine
    if _default_engine is None:
        with _default_engine_lock:
            if _default_engine is None:
                _default_engine = ExtractionEngine()
    return _default_engine


class BillExtractor:
    """
    Run extraction strategies over emails and documents.

    Emails return the first successful strategy. Documents return early on a
    success of at least PDF_EARLY_EXIT_CONFIDENCE, else the best success.
    When every strategy fails the result carries NoMatchingStrategy with the
    most informative failure message.
    """

    def __init__(
        self,
        engine: Optional[ExtractionEngine] = None,
        strategies: Optional[List[ExtractionStrategy]] = None,
        pdf_text_service: Optional[PdfTextService] = None
    ):
        self.engine = engine or get_extraction_engine()
        self.strategies = strategies or [
            StemPatternStrategy(self.engine),
            PatternStrategy(self.engine),
            RegexHeuristicStrategy(self.engine),
        ]
        self.pdf_text_service = pdf_text_service or PdfTextService()

    def extract_from_email(self, context: EmailContext) -> ExtractionResult:
        """Extract a bill from an email; first success wins."""
        failures: List[ExtractionResult] = []

        for strategy in self.strategies:
            result = self._run(strategy, context)
            if result.success and result.candidate_bills:
                logger.info(
                    "Extracted bill from email",
                    extra={
                        "message_id": context.message_id,
                        "strategy": strategy.name,
                        "confidence": result.confidence,
                    }
                )
                return result
            failures.append(result)

        return self._no_match(failures, context.message_id)

    def extract_from_document(self, context: DocumentContext) -> ExtractionResult:
        """
        Extract a bill from a document.

        Binary payloads without raw text are converted with the PDF-text
        service first.
        """
        if context.raw_text is None:
            pdf_text = self.pdf_text_service.extract_text(
                context.binary_payload,
                stop_when=lambda ratio: ratio >= 1.0,
            )
            context = dataclasses.replace(context, raw_text=pdf_text.text)

        best: Optional[ExtractionResult] = None
        failures: List[ExtractionResult] = []

        for strategy in self.strategies:
            result = self._run(strategy, context)
            if not (result.success and result.candidate_bills):
                failures.append(result)
                continue

            if result.confidence >= settings.PDF_EARLY_EXIT_CONFIDENCE:
                logger.info(
                    "Extracted bill from document",
                    extra={
                        "file_name": context.file_name,
                        "strategy": strategy.name,
                        "confidence": result.confidence,
                    }
                )
                return result

            if best is None or result.confidence > best.confidence:
                best = result

        if best is not None:
            logger.info(
                "Extracted low-confidence bill from document",
                extra={
                    "file_name": context.file_name,
                    "strategy": best.strategy,
                    "confidence": best.confidence,
                }
            )
            return best

        return self._no_match(failures, context.message_id)

    def extract_message(
        self,
        email: Optional[EmailContext],
        documents: Optional[List[DocumentContext]] = None
    ) -> List[CandidateBill]:
        """Extract from an email and its attachments, then deduplicate."""
        bills: List[CandidateBill] = []

        if email is not None:
            bills.extend(self.extract_from_email(email).candidate_bills)

        for document in documents or []:
            bills.extend(self.extract_from_document(document).candidate_bills)

        return deduplicate(bills)

    def _run(self, strategy: ExtractionStrategy, context) -> ExtractionResult:
        try:
            return strategy.extract(context)
        except Exception as e:
            logger.error(
                "Unexpected error in extraction strategy",
                extra={"strategy": strategy.name, "error": str(e)},
                exc_info=True
            )
            return ExtractionResult(
                success=False,
                error=str(e),
                error_code="unexpected_error",
                strategy=strategy.name,
            )

    def _no_match(self, failures: List[ExtractionResult], message_id: Optional[str]) -> ExtractionResult:
        """Failed result carrying the message of the highest-confidence failure."""
        with_errors = [failure for failure in failures if failure.error]
        if with_errors:
            # max() keeps the first of equal confidences
            message = max(with_errors, key=lambda failure: failure.confidence).error
        else:
            message = "No extraction strategy produced a bill"

        error = NoMatchingStrategy(message)
        logger.info(
            "No strategy produced a bill",
            extra={"message_id": message_id, "error": error.message}
        )
        return ExtractionResult(
            success=False,
            confidence=0.0,
            error=error.message,
            error_code=error.code,
        )
