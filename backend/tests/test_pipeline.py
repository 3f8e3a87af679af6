"""End-to-end pipeline tests with stub classifier stages and a mocked verifier."""

import json
from unittest.mock import Mock

import pytest

from jobfill.services.field_classification import (
    FieldType,
    FieldVerifier,
    FormField,
    FormFieldPipeline,
    HierarchicalCache,
    LearnedPatternStore,
    ResultSource,
    TwoStageClassifier,
)
from jobfill.services.field_classification.verifier import SOURCE_API, VerificationResult

from conftest import WORKDAY_URL, FailingStage, StubStage


def mock_verifier(field_type: FieldType, answer=None, confidence: float = 0.9) -> Mock:
    verifier = Mock(spec=FieldVerifier)
    verifier.is_available = True
    verifier.stats = {"api_calls": 1, "type_changes": 0, "fallbacks": 0}
    verifier.verify.return_value = VerificationResult(
        field_type=field_type,
        answer=answer,
        confidence=confidence,
        reasoning="stubbed",
        source=SOURCE_API,
    )
    return verifier


class TestCacheHits:
    def test_global_hit_is_answered(self, make_pipeline):
        pipeline = make_pipeline(stage1=FailingStage())

        output = pipeline.process_fields([FormField(label="First Name*")])
        outcome = output.outcomes[0]

        assert outcome.result.source == ResultSource.GLOBAL
        assert outcome.answer == "Jane"
        assert outcome.learned is False
        assert pipeline.classifier.stats.classified == 0

    def test_discovery_dicts_accepted(self, make_pipeline):
        output = make_pipeline().process_fields(
            [{"labelText": "Email Address", "type": "text"}, {"label": "Phone Number"}],
            url=WORKDAY_URL,
        )

        assert [o.result.field_type for o in output.outcomes] == [FieldType.EMAIL, FieldType.PHONE_NUMBER]
        assert [o.answer for o in output.outcomes] == ["jane.doe@example.com", "5035550142"]
        assert output.platform == "workday"
        assert output.company == "acme"


class TestLearning:
    def test_stage2_result_is_learned(self, make_pipeline, unseen_field, learned_store_path):
        stage1 = StubStage(FieldType.PREFERRED_NAME, 0.30)
        stage2 = StubStage(FieldType.EXPLANATION_TEXT, 0.72)
        pipeline = make_pipeline(stage1=stage1, stage2=stage2)

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.field_type == FieldType.EXPLANATION_TEXT
        assert outcome.result.source == ResultSource.STAGE2
        assert outcome.learned is True
        stored = json.loads(learned_store_path.read_text(encoding="utf-8"))
        assert [e["learnedFrom"] for e in stored.values()] == ["stage2_semantic"]

    def test_fresh_process_hits_learned_store(self, make_pipeline, unseen_field, learned_store_path, sample_profile):
        first = make_pipeline(
            stage1=StubStage(FieldType.PREFERRED_NAME, 0.30),
            stage2=StubStage(FieldType.EXPLANATION_TEXT, 0.72),
        )
        first.process_fields([unseen_field])

        stage1 = Mock()
        second = FormFieldPipeline(
            HierarchicalCache(LearnedPatternStore(learned_store_path)),
            classifier=TwoStageClassifier(stage1),
            profile=sample_profile,
        )
        outcome = second.process_fields([unseen_field]).outcomes[0]

        stage1.classify.assert_not_called()
        assert outcome.result.source == ResultSource.LEARNED
        assert outcome.result.field_type == FieldType.EXPLANATION_TEXT
        stored = json.loads(learned_store_path.read_text(encoding="utf-8"))
        assert list(stored.values())[0]["usageCount"] == 2

    def test_low_confidence_guess_not_learned_cached_or_answered(self, make_pipeline, cache, unseen_field):
        pipeline = make_pipeline(stage1=StubStage(FieldType.FIRST_NAME, 0.30))

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.field_type == FieldType.FIRST_NAME
        assert outcome.answer is None
        assert outcome.learned is False
        assert len(cache.learned_store) == 0
        assert len(cache.runtime) == 0

    def test_signal_fallback_uses_runtime_cache_only(self, make_pipeline, cache):
        pipeline = make_pipeline()
        field = FormField(label="Zip / Postal", id="custom--postalCode", element_type="text")

        first = pipeline.classify_field(field)
        second = pipeline.classify_field(field)

        assert first.result.source == ResultSource.FALLBACK
        assert first.result.field_type == FieldType.POSTAL_CODE
        assert first.answer == "97201"
        assert first.learned is False
        assert second.result.source == ResultSource.RUNTIME
        assert second.answer == "97201"
        assert len(cache.learned_store) == 0


class TestFailures:
    def test_classifier_failure_leaves_field_unfilled(self, make_pipeline, unseen_field):
        output = make_pipeline(stage1=FailingStage()).process_fields([unseen_field])
        outcome = output.outcomes[0]

        assert outcome.result.field_type == FieldType.UNKNOWN
        assert outcome.result.confidence == 0.0
        assert outcome.answer is None
        assert outcome.learned is False
        assert output.unknown == 1

    def test_store_write_failure_still_classifies(self, tmp_path, unseen_field, sample_profile):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        pipeline = FormFieldPipeline(
            HierarchicalCache(LearnedPatternStore(blocker / "learned.json")),
            classifier=TwoStageClassifier(StubStage(FieldType.EXPLANATION_TEXT, 0.9)),
            profile=sample_profile,
        )

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.field_type == FieldType.EXPLANATION_TEXT
        assert outcome.result.source == ResultSource.STAGE1


class TestVerification:
    def test_verifier_type_and_inferred_answer(self, make_pipeline, cache, unseen_field):
        verifier = mock_verifier(FieldType.VISA_SPONSORSHIP, answer="Yes")
        pipeline = make_pipeline(stage1=StubStage(FieldType.WORK_AUTHORIZATION, 0.5), verifier=verifier)

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.source == ResultSource.VERIFIER
        assert outcome.result.field_type == FieldType.VISA_SPONSORSHIP
        assert outcome.result.confidence == pytest.approx(0.9)
        # Profile says "No"; for Yes/No questions the verifier's inference wins
        assert outcome.answer == "Yes"
        assert outcome.learned is True
        assert cache.learned_store.all_entries()[0].entry.learned_from == "verifier"

        args = verifier.verify.call_args.args
        assert args[0] == unseen_field
        assert args[2] == "Yes"
        assert "Name: Jane Doe" in args[3]

    def test_state_evidence_overrides_verifier(self, make_pipeline):
        verifier = mock_verifier(FieldType.COUNTRY, answer="United States", confidence=0.8)
        pipeline = make_pipeline(stage1=StubStage(FieldType.COUNTRY, 0.5), verifier=verifier)
        field = FormField(label="State/Province", id="address--countryRegion", element_type="dropdown")

        outcome = pipeline.process_fields([field]).outcomes[0]

        assert outcome.result.field_type == FieldType.STATE
        assert outcome.result.source == ResultSource.VERIFIER
        assert outcome.result.confidence == pytest.approx(0.99)
        assert outcome.answer == "OR"
        assert outcome.aggregation.has_strong_agreement

    def test_unknown_from_verifier(self, make_pipeline, cache, unseen_field):
        pipeline = make_pipeline(
            stage1=StubStage(FieldType.WORK_AUTHORIZATION, 0.5),
            verifier=mock_verifier(FieldType.UNKNOWN, answer="Yes"),
        )

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.is_unknown
        assert outcome.answer is None
        assert len(cache.learned_store) == 0

    def test_unavailable_verifier_uses_local_result(self, make_pipeline, unseen_field):
        pipeline = make_pipeline(
            stage1=StubStage(FieldType.WORK_AUTHORIZATION, 0.5),
            verifier=FieldVerifier(api_key=None),
        )

        outcome = pipeline.process_fields([unseen_field]).outcomes[0]

        assert outcome.result.source == ResultSource.STAGE1
        assert outcome.answer == "Yes"
        assert outcome.verification.source == "no_api"


class TestRun:
    def test_cancellation_between_fields(self, make_pipeline):
        should_stop = Mock(side_effect=[False, True])

        output = make_pipeline().process_fields(
            [FormField(label="First Name*"), FormField(label="Last Name*")],
            should_stop=should_stop,
        )

        assert output.cancelled is True
        assert output.total_fields == 1

    def test_output_dict(self, make_pipeline, unseen_field):
        pipeline = make_pipeline(stage1=StubStage(FieldType.EXPLANATION_TEXT, 0.9))

        data = pipeline.process_fields([FormField(label="First Name*"), unseen_field]).to_dict()

        assert data["metadata"]["total_fields"] == 2
        assert data["metadata"]["cache_hits"] == 1
        assert data["metadata"]["classified"] == 1
        assert data["metadata"]["learned"] == 1
        assert data["metadata"]["answered"] == 1
        assert data["metadata"]["pattern_library_version"]
        assert data["fields"][0]["field_type"] == "first_name"
        assert data["fields"][1]["signals"]["agreement"] == "single"
        assert data["cache_stats"]["global_hits"] == 1
        assert set(data["classifier_stats"]) == {"signals", "two_stage"}
