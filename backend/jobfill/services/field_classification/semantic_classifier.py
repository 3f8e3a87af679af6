"""
Two-Stage Semantic Classifier
=============================

The expensive fallback used on a full cache miss.

Stage 1 - Zero-shot NLI:
------------------------
The field context ("This form field asks for: Extension. It is a text input
field...") is scored against every type description with the hypothesis
template "This form field collects {}". Accepted when the top score is
>= STAGE1_THRESHOLD (0.45).

Stage 2 - Embedding similarity:
-------------------------------
Entered only below the Stage 1 threshold. The context embedding is compared
(cosine) with one centroid per type, built from that type's reference
phrases. When the best similarity is >= STAGE2_THRESHOLD (0.60) it overrides
Stage 1; otherwise Stage 1's low-confidence guess is kept and callers apply
their own confidence floor.

Model Loading:
--------------
Both stages load lazily and at most once per process: the first call pays
the load, later calls reuse it. A failed load is remembered and not retried,
so a missing model degrades every field to ``unknown`` quickly instead of
re-attempting a multi-GB download per field.

Tradeoffs:
----------
- deberta-v3-large zero-shot is accurate but slow on CPU (~0.5-1s/field);
  the cache layers exist so it runs once per kind of field, ever
- Centroids average several phrasings per type; a single phrase per type
  overfits to its wording
- Stages are injected, so tests substitute deterministic stubs and never
  download a model
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import numpy as np

from .field_types import FieldType, FieldTypeOntology, ONTOLOGY
from .form_field import (
    ClassificationResult,
    FormField,
    ResultSource,
    build_field_context,
    unknown_result,
)

logger = logging.getLogger(__name__)

STAGE1_THRESHOLD = 0.45
STAGE2_THRESHOLD = 0.60

DEFAULT_ZERO_SHOT_MODEL = "MoritzLaurer/deberta-v3-large-zeroshot-v2.0"
DEFAULT_EMBEDDING_MODEL = "BAAI/bge-base-en-v1.5"


@dataclass
class StageResult:
    """Output of one classifier stage, already mapped onto FieldType."""
    field_type: FieldType
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)


class ClassifierStage(Protocol):
    def classify(self, context: str) -> StageResult:
        ...


def select_device(use_gpu: bool):
    """Pick CUDA, then Apple MPS, then CPU."""
    import torch

    if use_gpu and torch.cuda.is_available():
        logger.info("Using CUDA GPU for inference")
        return torch.device("cuda")
    if use_gpu and hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        logger.info("Using Apple MPS for inference")
        return torch.device("mps")
    logger.info("Using CPU for inference")
    return torch.device("cpu")


class ZeroShotStage:
    """Stage 1: transformers zero-shot-classification pipeline."""

    HYPOTHESIS_TEMPLATE = "This form field collects {}"

    def __init__(
        self,
        model_name: str = DEFAULT_ZERO_SHOT_MODEL,
        use_gpu: bool = True,
        ontology: FieldTypeOntology = ONTOLOGY,
    ):
        self.model_name = model_name
        self.use_gpu = use_gpu
        self.ontology = ontology
        self._pipeline = None
        self._load_error: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._pipeline is not None

    def _load(self):
        if self._pipeline is not None:
            return
        if self._load_error is not None:
            raise RuntimeError(f"Zero-shot model unavailable: {self._load_error}")

        try:
            from transformers import pipeline

            logger.info(f"Loading zero-shot model: {self.model_name}")
            device = select_device(self.use_gpu)
            self._pipeline = pipeline(
                "zero-shot-classification",
                model=self.model_name,
                device=device,
            )
            logger.info("Zero-shot model loaded")
        except Exception as e:
            self._load_error = str(e)
            logger.error(f"Failed to load zero-shot model {self.model_name}: {e}")
            raise

    def classify(self, context: str) -> StageResult:
        self._load()
        output = self._pipeline(
            context,
            candidate_labels=self.ontology.zero_shot_labels,
            hypothesis_template=self.HYPOTHESIS_TEMPLATE,
            multi_label=False,
        )
        top_label = output["labels"][0]
        top_score = float(output["scores"][0])
        return StageResult(
            field_type=self.ontology.from_description(top_label),
            confidence=top_score,
            details={"model_label": top_label},
        )


class EmbeddingStage:
    """
    Stage 2: cosine similarity against per-type centroid embeddings.

    ``embed_fn`` replaces the transformer encoder (texts -> row vectors),
    used by tests and by callers that already host an embedding service.
    """

    MAX_LENGTH = 128

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        use_gpu: bool = True,
        ontology: FieldTypeOntology = ONTOLOGY,
        embed_fn: Optional[Callable[[List[str]], Sequence[Sequence[float]]]] = None,
    ):
        self.model_name = model_name
        self.use_gpu = use_gpu
        self.ontology = ontology
        self._embed_fn = embed_fn

        self._tokenizer = None
        self._model = None
        self._device = None
        self._load_error: Optional[str] = None
        self._centroids: Optional[Dict[FieldType, np.ndarray]] = None

    def _load(self):
        if self._model is not None:
            return
        if self._load_error is not None:
            raise RuntimeError(f"Embedding model unavailable: {self._load_error}")

        try:
            from transformers import AutoModel, AutoTokenizer

            logger.info(f"Loading embedding model: {self.model_name}")
            self._device = select_device(self.use_gpu)
            self._tokenizer = AutoTokenizer.from_pretrained(self.model_name)
            model = AutoModel.from_pretrained(self.model_name)
            model.to(self._device)
            model.eval()
            self._model = model
            logger.info("Embedding model loaded")
        except Exception as e:
            self._load_error = str(e)
            logger.error(f"Failed to load embedding model {self.model_name}: {e}")
            raise

    def _encode(self, texts: List[str]) -> np.ndarray:
        """Mean-pooled, L2-normalized sentence embeddings."""
        import torch

        self._load()
        encoded = self._tokenizer(
            texts,
            padding=True,
            truncation=True,
            max_length=self.MAX_LENGTH,
            return_tensors="pt",
        ).to(self._device)

        with torch.no_grad():
            output = self._model(**encoded)

        token_embeddings = output.last_hidden_state
        mask = encoded["attention_mask"].unsqueeze(-1).expand(token_embeddings.size()).float()
        summed = (token_embeddings * mask).sum(dim=1)
        counts = mask.sum(dim=1).clamp(min=1e-9)
        pooled = torch.nn.functional.normalize(summed / counts, p=2, dim=1)
        return pooled.cpu().numpy()

    def embed(self, texts: List[str]) -> np.ndarray:
        if self._embed_fn is not None:
            vectors = np.asarray(self._embed_fn(texts), dtype=np.float32)
        else:
            vectors = self._encode(texts)
        return _normalize_rows(vectors)

    def _ensure_centroids(self) -> Dict[FieldType, np.ndarray]:
        if self._centroids is not None:
            return self._centroids

        centroids: Dict[FieldType, np.ndarray] = {}
        for field_type, phrases in self.ontology.reference_corpus.items():
            centroid = self.embed(phrases).mean(axis=0)
            norm = np.linalg.norm(centroid)
            if norm > 0:
                centroid = centroid / norm
            centroids[field_type] = centroid

        logger.info(f"Built {len(centroids)} type centroids")
        self._centroids = centroids
        return centroids

    def classify(self, context: str) -> StageResult:
        centroids = self._ensure_centroids()
        vector = self.embed([context])[0]

        best_type = FieldType.UNKNOWN
        best_similarity = 0.0
        for field_type, centroid in centroids.items():
            similarity = float(np.dot(vector, centroid))
            if similarity > best_similarity:
                best_type, best_similarity = field_type, similarity

        return StageResult(field_type=best_type, confidence=best_similarity)


def _normalize_rows(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


@dataclass
class ClassifierStats:
    classified: int = 0
    stage1_accepts: int = 0
    stage2_escalations: int = 0
    stage2_overrides: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "classified": self.classified,
            "stage1_accepts": self.stage1_accepts,
            "stage2_escalations": self.stage2_escalations,
            "stage2_overrides": self.stage2_overrides,
            "errors": self.errors,
        }


class TwoStageClassifier:
    """
    Zero-shot first, embedding similarity only below the Stage 1 threshold.

    Never raises: any stage failure is logged and surfaces as ``unknown``
    with confidence 0.
    """

    def __init__(
        self,
        stage1: ClassifierStage,
        stage2: Optional[ClassifierStage] = None,
        stage1_threshold: float = STAGE1_THRESHOLD,
        stage2_threshold: float = STAGE2_THRESHOLD,
    ):
        self.stage1 = stage1
        self.stage2 = stage2
        self.stage1_threshold = stage1_threshold
        self.stage2_threshold = stage2_threshold
        self.stats = ClassifierStats()

    def classify(self, form_field: FormField) -> ClassificationResult:
        """
        Classify one field.

        Args:
            form_field: The field to classify

        Returns:
            ClassificationResult with source stage1_zero_shot or
            stage2_semantic, or an unknown result on failure
        """
        context = build_field_context(form_field)
        self.stats.classified += 1

        try:
            first = self.stage1.classify(context)
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Stage 1 classification failed for '{form_field.display_name}': {e}")
            return unknown_result(reason=f"classifier_error: {e}")

        # >= so a score exactly at the threshold is accepted
        if first.confidence >= self.stage1_threshold or self.stage2 is None:
            if first.confidence >= self.stage1_threshold:
                self.stats.stage1_accepts += 1
            return self._to_result(first, ResultSource.STAGE1, context)

        self.stats.stage2_escalations += 1
        logger.debug(
            f"Stage 1 confidence {first.confidence:.2f} < {self.stage1_threshold} "
            f"for '{form_field.display_name}', escalating to stage 2"
        )

        try:
            second = self.stage2.classify(context)
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Stage 2 classification failed for '{form_field.display_name}': {e}")
            return self._to_result(first, ResultSource.STAGE1, context)

        if second.confidence >= self.stage2_threshold and second.field_type != FieldType.UNKNOWN:
            self.stats.stage2_overrides += 1
            result = self._to_result(second, ResultSource.STAGE2, context)
            result.details["stage1_type"] = first.field_type.value
            result.details["stage1_confidence"] = round(first.confidence, 4)
            return result

        # Keep the low-confidence Stage 1 guess
        result = self._to_result(first, ResultSource.STAGE1, context)
        result.details["stage2_type"] = second.field_type.value
        result.details["stage2_similarity"] = round(second.confidence, 4)
        return result

    @staticmethod
    def _to_result(stage_result: StageResult, source: ResultSource, context: str) -> ClassificationResult:
        details = dict(stage_result.details)
        details["context"] = context
        return ClassificationResult(
            field_type=stage_result.field_type,
            confidence=stage_result.confidence,
            source=source,
            details=details,
        )
