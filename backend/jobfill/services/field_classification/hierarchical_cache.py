"""
Hierarchical Cache
==================

One lookup chain answering "what is this field?" from the cheapest, most
certain source first:

    1. Global patterns    (label regex)            0.95
    2. Platform patterns  (id/name regex)          0.95
    3. Question patterns  (label+section regex)    0.90
    4. Learned patterns   (exact key, then loose)  0.90 / 0.85
    5. Runtime cache      (this process only)      0.85

The first hit wins. Learned patterns sit after the static rules so that a bad
learned entry can never override a hand-curated rule.

Learning:
---------
``record_runtime`` only touches the in-memory runtime cache. Promotion to the
learned store goes through ``learn``, which the pipeline calls for results of
the expensive classifiers only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .field_types import FieldType
from .form_field import ClassificationResult, FormField, ResultSource
from .learned_store import LearnedPatternStore
from .pattern_library import PatternLibrary
from .platform_detection import Platform, UNKNOWN_COMPANY, detect_platform, extract_company

logger = logging.getLogger(__name__)

LEARNED_EXACT_CONFIDENCE = 0.90
LEARNED_LOOSE_CONFIDENCE = 0.85
RUNTIME_CONFIDENCE = 0.85


class RuntimeCache:
    """Session-scoped field -> type map; never persisted."""

    def __init__(self):
        self._entries: Dict[str, FieldType] = {}

    @staticmethod
    def key_for(form_field: FormField, platform: Platform, company: str) -> str:
        return ":".join([
            platform.value,
            company,
            form_field.identifier,
            form_field.label,
            form_field.element_type,
        ])

    def get(self, key: str) -> Optional[FieldType]:
        return self._entries.get(key)

    def put(self, key: str, field_type: FieldType):
        self._entries[key] = field_type

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class CacheStats:
    """Hit/miss counters per cache level."""
    global_hits: int = 0
    platform_hits: int = 0
    question_hits: int = 0
    learned_verified_hits: int = 0
    learned_unverified_hits: int = 0
    runtime_hits: int = 0
    misses: int = 0

    @property
    def learned_hits(self) -> int:
        return self.learned_verified_hits + self.learned_unverified_hits

    @property
    def total_hits(self) -> int:
        return (
            self.global_hits + self.platform_hits + self.question_hits
            + self.learned_hits + self.runtime_hits
        )

    @property
    def total_lookups(self) -> int:
        return self.total_hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage rounded to one decimal."""
        if self.total_lookups == 0:
            return 0.0
        return round(self.total_hits / self.total_lookups * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "global_hits": self.global_hits,
            "platform_hits": self.platform_hits,
            "question_hits": self.question_hits,
            "learned_hits": self.learned_hits,
            "learned_verified_hits": self.learned_verified_hits,
            "learned_unverified_hits": self.learned_unverified_hits,
            "runtime_hits": self.runtime_hits,
            "misses": self.misses,
            "total_lookups": self.total_lookups,
            "hit_rate": self.hit_rate,
        }


class HierarchicalCache:
    """
    Ordered lookup over pattern library, learned store and runtime cache.

    Call ``set_context(url)`` once per page so platform rules and runtime
    keys are scoped correctly.
    """

    def __init__(
        self,
        learned_store: LearnedPatternStore,
        pattern_library: Optional[PatternLibrary] = None,
    ):
        self.learned_store = learned_store
        self.patterns = pattern_library or PatternLibrary()
        self.runtime = RuntimeCache()
        self.stats = CacheStats()
        self.platform = Platform.UNKNOWN
        self.company = UNKNOWN_COMPANY

    def set_context(self, url: Optional[str]):
        """Detect platform and company for the page being filled."""
        self.platform = detect_platform(url)
        self.company = extract_company(url)
        logger.info(f"Cache context: platform={self.platform.value}, company={self.company}")

    def lookup(self, form_field: FormField) -> Optional[ClassificationResult]:
        """
        Try every level in order, stopping at the first hit.

        Returns:
            The hit's ClassificationResult, or None on a full miss
        """
        # Level 1: global label patterns
        result = self.patterns.match_global(form_field)
        if result:
            self.stats.global_hits += 1
            return result

        # Level 2: platform id patterns
        result = self.patterns.match_platform(form_field, self.platform)
        if result:
            self.stats.platform_hits += 1
            return result

        # Level 3: question text patterns
        result = self.patterns.match_question(form_field)
        if result:
            self.stats.question_hits += 1
            return result

        # Level 4: learned patterns
        match = self.learned_store.lookup(form_field, self.platform)
        if match:
            if match.entry.verified:
                self.stats.learned_verified_hits += 1
            else:
                self.stats.learned_unverified_hits += 1
            return ClassificationResult(
                field_type=match.entry.field_type,
                confidence=LEARNED_EXACT_CONFIDENCE if match.exact else LEARNED_LOOSE_CONFIDENCE,
                source=ResultSource.LEARNED,
                details={
                    "key": match.key,
                    "exact": match.exact,
                    "verified": match.entry.verified,
                    "learned_from": match.entry.learned_from,
                },
            )

        # Level 5: runtime cache
        runtime_key = RuntimeCache.key_for(form_field, self.platform, self.company)
        field_type = self.runtime.get(runtime_key)
        if field_type is not None:
            self.stats.runtime_hits += 1
            return ClassificationResult(
                field_type=field_type,
                confidence=RUNTIME_CONFIDENCE,
                source=ResultSource.RUNTIME,
            )

        self.stats.misses += 1
        return None

    def record_runtime(self, form_field: FormField, field_type: FieldType):
        """Remember a resolution for the rest of this process."""
        if field_type == FieldType.UNKNOWN:
            return
        runtime_key = RuntimeCache.key_for(form_field, self.platform, self.company)
        self.runtime.put(runtime_key, field_type)

    def learn(self, form_field: FormField, field_type: FieldType, source: ResultSource) -> bool:
        """Persist an expensive classifier's resolution to the learned store."""
        return self.learned_store.learn(
            form_field,
            field_type,
            source.value,
            platform=self.platform,
            company=self.company,
        )

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats["runtime_cache_size"] = len(self.runtime)
        stats.update(self.learned_store.counts())
        return stats

    def reset_stats(self):
        self.stats = CacheStats()
