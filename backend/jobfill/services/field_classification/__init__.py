"""
Form Field Classification
=========================

Classifies discovered job-application form fields into a closed set of
field types and resolves an answer for each from the applicant profile.

Lookup Order:
1. Global label patterns
2. Platform id patterns (Workday, Taleo, iCIMS)
3. Question text patterns
4. Learned patterns (persisted from earlier expensive classifications)
5. Runtime cache (this process)
6. Two-stage local classifier (zero-shot NLI, then embedding similarity)
7. Optional remote verifier with evidence-based conflict resolution

Design Principles:
- Pay for an expensive classification once per kind of field, ever
- Learned patterns store types only, never answers
- Static rules outrank learned ones
- No failure escapes a field; unknown fields are left unfilled
"""

from .field_types import FieldType, FieldTypeOntology, ONTOLOGY
from .form_field import ClassificationResult, FormField, ResultSource, build_field_context
from .platform_detection import Platform, detect_platform, extract_company
from .pattern_library import PatternLibrary, PatternRule, RuleSet
from .learned_store import LearnedPatternStore, build_learned_key, build_loose_key
from .hierarchical_cache import HierarchicalCache, RuntimeCache
from .semantic_classifier import EmbeddingStage, TwoStageClassifier, ZeroShotStage
from .signal_aggregator import Agreement, SignalAggregator, SignalSource
from .verifier import FieldVerifier, merge_answers
from .answer_resolver import AnswerResolver, build_profile_summary, load_profile, resolve_answer
from .pipeline import FieldOutcome, FormFieldPipeline, PipelineOutput

__all__ = [
    'FormFieldPipeline',
    'PipelineOutput',
    'FieldOutcome',
    'FieldType',
    'FieldTypeOntology',
    'ONTOLOGY',
    'FormField',
    'ClassificationResult',
    'ResultSource',
    'build_field_context',
    'Platform',
    'detect_platform',
    'extract_company',
    'PatternLibrary',
    'PatternRule',
    'RuleSet',
    'LearnedPatternStore',
    'build_learned_key',
    'build_loose_key',
    'HierarchicalCache',
    'RuntimeCache',
    'ZeroShotStage',
    'EmbeddingStage',
    'TwoStageClassifier',
    'SignalAggregator',
    'SignalSource',
    'Agreement',
    'FieldVerifier',
    'merge_answers',
    'AnswerResolver',
    'resolve_answer',
    'load_profile',
    'build_profile_summary',
]
