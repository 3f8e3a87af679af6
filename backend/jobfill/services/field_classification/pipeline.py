"""
Form Field Classification Pipeline
==================================

The orchestrator that classifies discovered form fields one at a time, in
document order, and resolves an answer for each.

Per-field Stages:
-----------------
1. CACHE: global -> platform -> question -> learned -> runtime; a hit ends
   classification
2. LOCAL CLASSIFIER: two-stage zero-shot / embedding classifier (miss only)
3. SIGNALS: field id, options, label and local classifier aggregated into a
   proposed type with an agreement category
4. VERIFIER (optional): remote second opinion on type and answer, with
   evidence-based conflict resolution against strong signal agreement
5. LEARN: results from stage 1, stage 2 or the verifier at or above the
   confidence floor are persisted to the learned store
6. ANSWER: profile lookup for the resolved type

Design Principles:
------------------
- Only expensive results are learned; static-rule and signal-only results
  are recomputed for free next time
- Nothing raises out of a field: failures become ``unknown`` and the field
  is left unfilled
- Cancellation is checked between fields, never mid-field
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .answer_resolver import AnswerResolver, Profile
from .field_types import FieldType
from .form_field import ClassificationResult, FormField, ResultSource, unknown_result
from .hierarchical_cache import HierarchicalCache
from .pattern_library import PATTERN_LIBRARY_VERSION
from .semantic_classifier import TwoStageClassifier
from .signal_aggregator import AggregatedSignals, SignalAggregator, SignalSource
from .verifier import FieldVerifier, VerificationResult, merge_answers

logger = logging.getLogger(__name__)


@dataclass
class FieldOutcome:
    """Final result for a single field."""
    index: int
    form_field: FormField
    result: ClassificationResult
    answer: Optional[str] = None
    learned: bool = False
    aggregation: Optional[AggregatedSignals] = None
    verification: Optional[VerificationResult] = None
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "index": self.index,
            "label": self.form_field.label,
            "id": self.form_field.identifier,
            **self.result.to_dict(),
            "answer": self.answer,
            "learned": self.learned,
            "processing_time_ms": self.processing_time_ms,
        }
        if self.aggregation is not None:
            data["signals"] = self.aggregation.to_dict()
        if self.verification is not None:
            data["verification"] = {
                "source": self.verification.source,
                "reasoning": self.verification.reasoning,
                "input_hash": self.verification.input_hash,
            }
        return data


@dataclass
class PipelineOutput:
    """Complete output for one page of fields."""
    outcomes: List[FieldOutcome]
    url: Optional[str] = None
    platform: str = "unknown"
    company: str = "unknown"

    total_fields: int = 0
    cache_hits: int = 0
    classified: int = 0
    learned: int = 0
    unknown: int = 0
    answered: int = 0
    cancelled: bool = False

    processing_start: str = ""
    processing_end: str = ""
    total_processing_time_ms: int = 0
    pattern_library_version: str = PATTERN_LIBRARY_VERSION

    cache_stats: Dict[str, Any] = field(default_factory=dict)
    classifier_stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "platform": self.platform,
            "company": self.company,
            "fields": [o.to_dict() for o in self.outcomes],
            "metadata": {
                "total_fields": self.total_fields,
                "cache_hits": self.cache_hits,
                "classified": self.classified,
                "learned": self.learned,
                "unknown": self.unknown,
                "answered": self.answered,
                "cancelled": self.cancelled,
                "processing_start": self.processing_start,
                "processing_end": self.processing_end,
                "total_processing_time_ms": self.total_processing_time_ms,
                "pattern_library_version": self.pattern_library_version,
            },
            "cache_stats": self.cache_stats,
            "classifier_stats": self.classifier_stats,
        }


class FormFieldPipeline:
    """
    Classifies fields and resolves answers.

    Example usage:

        pipeline = FormFieldPipeline(cache, classifier=classifier, profile=profile)
        output = pipeline.process_fields(fields, url="https://acme.wd1.myworkdayjobs.com/...")
        for outcome in output.outcomes:
            print(outcome.result.field_type, outcome.answer)
    """

    # Results below this are never learned, cached or answered
    UNKNOWN_CONFIDENCE_THRESHOLD = 0.4

    def __init__(
        self,
        cache: HierarchicalCache,
        classifier: Optional[TwoStageClassifier] = None,
        aggregator: Optional[SignalAggregator] = None,
        verifier: Optional[FieldVerifier] = None,
        resolver: Optional[AnswerResolver] = None,
        profile: Optional[Profile] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            cache: Hierarchical cache (owns the learned store)
            classifier: Local two-stage classifier; None disables it
            aggregator: Signal aggregator (a fresh one by default)
            verifier: Optional remote verifier
            resolver: Answer resolver; built from ``profile`` when omitted
            profile: Applicant profile used when no resolver is given
        """
        self.cache = cache
        self.classifier = classifier
        self.aggregator = aggregator or SignalAggregator()
        self.verifier = verifier
        self.resolver = resolver or AnswerResolver(profile)

        logger.info(
            f"Initialized FormFieldPipeline - "
            f"local classifier: {classifier is not None}, "
            f"verifier: {verifier is not None and verifier.is_available}"
        )

    def process_fields(
        self,
        fields: Iterable[Union[FormField, Dict[str, Any]]],
        url: Optional[str] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> PipelineOutput:
        """
        Classify every field in document order.

        Args:
            fields: FormField instances or discovery-layer dictionaries
            url: Page URL used for platform/company detection
            should_stop: Checked before each field; True cancels the rest

        Returns:
            PipelineOutput with one FieldOutcome per processed field
        """
        start_time = time.time()
        processing_start = datetime.now(timezone.utc).isoformat()
        self.cache.set_context(url)

        outcomes: List[FieldOutcome] = []
        cancelled = False
        for index, item in enumerate(fields):
            if should_stop is not None and should_stop():
                logger.info(f"Cancelled after {len(outcomes)} field(s)")
                cancelled = True
                break
            form_field = item if isinstance(item, FormField) else FormField.from_dict(item)
            outcomes.append(self.classify_field(form_field, index=index))

        # Persist usage counters bumped by learned-store hits
        if any(o.result.source == ResultSource.LEARNED for o in outcomes):
            self.cache.learned_store.save()

        output = PipelineOutput(
            outcomes=outcomes,
            url=url,
            platform=self.cache.platform.value,
            company=self.cache.company,
            total_fields=len(outcomes),
            cache_hits=sum(1 for o in outcomes if o.result.source.is_cache_level),
            classified=sum(1 for o in outcomes if not o.result.source.is_cache_level),
            learned=sum(1 for o in outcomes if o.learned),
            unknown=sum(1 for o in outcomes if o.result.is_unknown),
            answered=sum(1 for o in outcomes if o.answer is not None),
            cancelled=cancelled,
            processing_start=processing_start,
            processing_end=datetime.now(timezone.utc).isoformat(),
            total_processing_time_ms=int((time.time() - start_time) * 1000),
            cache_stats=self.cache.get_stats(),
            classifier_stats=self.get_classifier_stats(),
        )

        logger.info(
            f"Processed {output.total_fields} field(s): {output.cache_hits} cache hits, "
            f"{output.classified} classified, {output.learned} learned, "
            f"{output.unknown} unknown in {output.total_processing_time_ms}ms"
        )
        return output

    def classify_field(self, form_field: FormField, index: int = 0) -> FieldOutcome:
        """Classify one field and resolve its answer."""
        start_time = time.time()

        hit = self.cache.lookup(form_field)
        if hit is not None:
            logger.debug(f"Cache hit ({hit.source.value}) for '{form_field.display_name}': {hit.field_type.value}")
            return FieldOutcome(
                index=index,
                form_field=form_field,
                result=hit,
                answer=self._resolve(hit, form_field),
                processing_time_ms=int((time.time() - start_time) * 1000),
            )

        ai_result = self.classifier.classify(form_field) if self.classifier is not None else None
        aggregated = self.aggregator.aggregate(self.aggregator.collect(form_field, ai_result))

        verification = None
        result = None
        answer = None
        if self.verifier is not None:
            proposed_answer = self._resolve_type(aggregated.field_type, form_field)
            verification = self.verifier.verify(form_field, aggregated, proposed_answer, self.resolver.summary())
            if verification.called:
                result, answer = self._apply_verification(form_field, aggregated, verification)

        if result is None:
            result = self._local_result(aggregated, ai_result)
            answer = self._resolve(result, form_field)

        learned = False
        if self._should_learn(result):
            learned = self.cache.learn(form_field, result.field_type, result.source)

        if not result.is_unknown and result.confidence >= self.UNKNOWN_CONFIDENCE_THRESHOLD:
            self.cache.record_runtime(form_field, result.field_type)

        logger.info(
            f"Classified '{form_field.display_name}' -> {result.field_type.value} "
            f"({result.confidence:.2f}, {result.source.value}, {aggregated.agreement.value})"
        )

        return FieldOutcome(
            index=index,
            form_field=form_field,
            result=result,
            answer=answer,
            learned=learned,
            aggregation=aggregated,
            verification=verification,
            processing_time_ms=int((time.time() - start_time) * 1000),
        )

    def _apply_verification(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        verification: VerificationResult,
    ):
        resolution = self.aggregator.resolve_conflict(form_field, aggregated, verification.field_type)
        confidence = verification.confidence
        if resolution.overridden:
            confidence = max(confidence, aggregated.confidence)
            logger.info(f"Evidence resolved '{form_field.display_name}' to {resolution.field_type.value}: {resolution.reason}")

        result = ClassificationResult(
            field_type=resolution.field_type,
            confidence=confidence,
            source=ResultSource.VERIFIER,
            details={
                "proposed_type": aggregated.field_type.value,
                "agreement": aggregated.agreement.value,
                "resolution": resolution.reason,
            },
        )
        if result.is_unknown:
            return result, None

        resolver_answer = self._resolve_type(result.field_type, form_field)
        if resolution.overridden:
            # The verifier's answer belongs to the type it was overruled on
            return result, resolver_answer
        return result, merge_answers(resolver_answer, verification.answer)

    def _local_result(
        self,
        aggregated: AggregatedSignals,
        ai_result: Optional[ClassificationResult],
    ) -> ClassificationResult:
        """Result without a verifier: the classifier's own when its group won."""
        if (
            ai_result is not None
            and aggregated.includes(SignalSource.LOCAL_AI)
            and ai_result.field_type == aggregated.field_type
        ):
            return ai_result

        if aggregated.field_type != FieldType.UNKNOWN:
            return ClassificationResult(
                field_type=aggregated.field_type,
                confidence=aggregated.confidence,
                source=ResultSource.FALLBACK,
                details={"agreement": aggregated.agreement.value},
            )

        if ai_result is not None and ai_result.is_unknown:
            return ai_result
        return unknown_result(reason="no signals")

    def _should_learn(self, result: ClassificationResult) -> bool:
        return (
            result.source.is_expensive
            and not result.is_unknown
            and result.confidence >= self.UNKNOWN_CONFIDENCE_THRESHOLD
        )

    def _resolve(self, result: ClassificationResult, form_field: FormField) -> Optional[str]:
        if result.is_unknown or result.confidence < self.UNKNOWN_CONFIDENCE_THRESHOLD:
            return None
        return self._resolve_type(result.field_type, form_field)

    def _resolve_type(self, field_type: FieldType, form_field: FormField) -> Optional[str]:
        if field_type == FieldType.UNKNOWN:
            return None
        return self.resolver.resolve(field_type, form_field)

    def get_classifier_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"signals": self.aggregator.get_stats()}
        if self.classifier is not None:
            stats["two_stage"] = self.classifier.stats.to_dict()
        if self.verifier is not None:
            stats["verifier"] = dict(self.verifier.stats)
        return stats
