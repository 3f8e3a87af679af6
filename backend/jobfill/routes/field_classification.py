"""
Field Classification API Routes
===============================

REST API endpoints for the form field classification pipeline and the
learned-pattern review workflow.

Endpoints:
- POST /api/v1/fields/classify - Classify a page of fields and resolve answers
- GET /api/v1/fields/types - Get the field type vocabulary
- GET /api/v1/fields/stats - Cache, classifier and call budget statistics
- GET /api/v1/fields/patterns - List learned patterns for review
- POST /api/v1/fields/patterns/verify - Mark a learned pattern as correct
- POST /api/v1/fields/patterns/reject - Delete a learned pattern
- POST /api/v1/fields/patterns/update-type - Correct a learned pattern's type
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from jobfill.config import Config
from jobfill.models import (
    ClassifyRequest, ClassifyResponse, FieldTypeInfo, FieldTypesResponse,
    LearnedPatternsResponse, PatternActionResponse, RateLimitStatus,
    RejectPatternRequest, StatsResponse, UpdatePatternTypeRequest,
    VerifyPatternRequest,
)
from jobfill.services.field_classification import (
    ONTOLOGY,
    EmbeddingStage,
    FieldType,
    FieldVerifier,
    FormFieldPipeline,
    HierarchicalCache,
    LearnedPatternStore,
    TwoStageClassifier,
    ZeroShotStage,
    load_profile,
)
from jobfill.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/fields", tags=["Field Classification"])


# ============================================================================
# Pipeline singleton
# ============================================================================

_pipeline_instance: Optional[FormFieldPipeline] = None


def build_pipeline() -> FormFieldPipeline:
    """Assemble the pipeline from Config. Models load lazily on first miss."""
    store = LearnedPatternStore(
        Config.LEARNED_PATTERNS_FILE,
        auto_verify=Config.auto_verify_learned(),
    )

    classifier = None
    if Config.ENABLE_LOCAL_CLASSIFIER:
        classifier = TwoStageClassifier(
            stage1=ZeroShotStage(Config.ZERO_SHOT_MODEL, use_gpu=Config.USE_GPU),
            stage2=EmbeddingStage(Config.EMBEDDING_MODEL, use_gpu=Config.USE_GPU),
            stage1_threshold=Config.STAGE1_THRESHOLD,
            stage2_threshold=Config.STAGE2_THRESHOLD,
        )

    rate_limiter = RateLimiter(
        max_total_calls=Config.MAX_VERIFIER_CALLS,
        max_calls_per_minute=Config.VERIFIER_CALLS_PER_MINUTE,
    ) if Config.ENABLE_RATE_LIMITING else None
    verifier = FieldVerifier(
        api_key=Config.VERIFIER_API_KEY,
        api_base=Config.VERIFIER_API_BASE,
        model_name=Config.VERIFIER_MODEL,
        timeout=Config.VERIFIER_TIMEOUT,
        rate_limiter=rate_limiter,
    ) if Config.VERIFIER_API_KEY else None

    return FormFieldPipeline(
        cache=HierarchicalCache(store),
        classifier=classifier,
        verifier=verifier,
        profile=load_profile(Config.PROFILE_PATH),
    )


def get_pipeline() -> FormFieldPipeline:
    """Get or create the pipeline instance."""
    global _pipeline_instance

    if _pipeline_instance is None:
        _pipeline_instance = build_pipeline()
        logger.info("Initialized FormFieldPipeline singleton")

    return _pipeline_instance


# ============================================================================
# Classification
# ============================================================================

@router.post("/classify", response_model=ClassifyResponse)
async def classify_fields(
    request: ClassifyRequest,
    pipeline: FormFieldPipeline = Depends(get_pipeline),
) -> ClassifyResponse:
    """
    Classify the fields of one page, in document order.

    Each field goes through the cache levels first; only misses reach the
    local classifier and the optional verifier. Expensive results are
    learned so the next page with the same field is a cache hit.
    """
    try:
        logger.info(f"Classifying {len(request.fields)} field(s) for {request.url or '(no url)'}")
        output = pipeline.process_fields(
            [f.model_dump() for f in request.fields],
            url=request.url,
        )
        data = output.to_dict()
        return ClassifyResponse(success=True, **data)

    except Exception as e:
        logger.error(f"Pipeline error: {e}", exc_info=True)
        return ClassifyResponse(success=False, url=request.url, error=str(e))


@router.get("/types", response_model=FieldTypesResponse)
async def get_field_types() -> FieldTypesResponse:
    """
    Get the closed field type vocabulary shared by every layer.
    """
    types = []
    for field_type in FieldType:
        metadata = ONTOLOGY.get_metadata(field_type)
        types.append(FieldTypeInfo(
            name=field_type.value,
            category=metadata.category,
            is_yes_no=metadata.is_yes_no,
            description=metadata.description,
        ))
    return FieldTypesResponse(total_types=len(types), types=types)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(pipeline: FormFieldPipeline = Depends(get_pipeline)) -> StatsResponse:
    """Cache hit rates per level, classifier stage counts and call budget."""
    rate_limit = None
    if pipeline.verifier is not None and pipeline.verifier.rate_limiter is not None:
        stats = pipeline.verifier.rate_limiter.get_stats()
        rate_limit = RateLimitStatus(
            total_calls=stats['total_calls'],
            max_calls=stats['max_calls'],
            remaining_calls=stats['remaining_calls'],
            calls_last_minute=stats['calls_last_minute'],
            calls_by_service=stats['calls_by_service'],
        )

    return StatsResponse(
        cache=pipeline.cache.get_stats(),
        classifier=pipeline.get_classifier_stats(),
        rate_limit=rate_limit,
    )


# ============================================================================
# Learned pattern review
# ============================================================================

@router.get("/patterns", response_model=LearnedPatternsResponse)
async def list_patterns(
    status: str = Query("all", description="all | unverified"),
    days: Optional[int] = Query(None, ge=1, description="Only patterns learned in the last N days"),
    pipeline: FormFieldPipeline = Depends(get_pipeline),
) -> LearnedPatternsResponse:
    """
    List learned patterns for review, newest first.
    """
    store = pipeline.cache.learned_store

    if status not in ("all", "unverified"):
        raise HTTPException(status_code=400, detail=f"Invalid status '{status}'. Use 'all' or 'unverified'")

    if days is not None:
        items = store.recent(days)
        if status == "unverified":
            items = [item for item in items if not item.entry.verified]
    elif status == "unverified":
        items = store.unverified()
    else:
        items = store.all_entries()

    patterns = [item.to_dict() for item in items]
    return LearnedPatternsResponse(total=len(patterns), patterns=patterns)


def _require_pattern(store: LearnedPatternStore, key: str):
    if key not in store:
        raise HTTPException(status_code=404, detail=f"Learned pattern not found: {key}")


@router.post("/patterns/verify", response_model=PatternActionResponse)
async def verify_pattern(
    request: VerifyPatternRequest,
    pipeline: FormFieldPipeline = Depends(get_pipeline),
) -> PatternActionResponse:
    """Mark a learned pattern as verified."""
    store = pipeline.cache.learned_store
    _require_pattern(store, request.key)

    store.verify(request.key, verified_by=request.verified_by)
    return PatternActionResponse(success=True, key=request.key, message=f"Verified by {request.verified_by}")


@router.post("/patterns/reject", response_model=PatternActionResponse)
async def reject_pattern(
    request: RejectPatternRequest,
    pipeline: FormFieldPipeline = Depends(get_pipeline),
) -> PatternActionResponse:
    """Delete an incorrect learned pattern."""
    store = pipeline.cache.learned_store
    _require_pattern(store, request.key)

    store.reject(request.key)
    return PatternActionResponse(success=True, key=request.key, message="Rejected and deleted")


@router.post("/patterns/update-type", response_model=PatternActionResponse)
async def update_pattern_type(
    request: UpdatePatternTypeRequest,
    pipeline: FormFieldPipeline = Depends(get_pipeline),
) -> PatternActionResponse:
    """Correct a learned pattern's type; the correction counts as verification."""
    store = pipeline.cache.learned_store
    _require_pattern(store, request.key)

    if not ONTOLOGY.is_valid(request.field_type) or request.field_type == FieldType.UNKNOWN.value:
        raise HTTPException(status_code=400, detail=f"Invalid field type: {request.field_type}")

    previous = store.get(request.key).field_type
    store.update_type(request.key, FieldType(request.field_type), verified_by=request.verified_by)
    return PatternActionResponse(
        success=True,
        key=request.key,
        message=f"Type changed from {previous.value} to {request.field_type}",
    )
