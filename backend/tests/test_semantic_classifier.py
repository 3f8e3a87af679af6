"""Tests for the two-stage classifier with stub stages."""

from unittest.mock import Mock, patch

import pytest

from jobfill.services.field_classification import (
    EmbeddingStage,
    FieldType,
    FormField,
    ResultSource,
    TwoStageClassifier,
    ZeroShotStage,
)
from jobfill.services.field_classification.semantic_classifier import StageResult

from conftest import FailingStage, StubStage

FIELD = FormField(label="Extension", id="phoneNumber--extension", element_type="text")


class TestThresholds:
    def test_stage1_at_threshold_is_accepted(self):
        stage2 = Mock()
        classifier = TwoStageClassifier(StubStage(FieldType.PHONE_EXTENSION, 0.45), stage2)

        result = classifier.classify(FIELD)

        assert result.source == ResultSource.STAGE1
        assert result.field_type == FieldType.PHONE_EXTENSION
        stage2.classify.assert_not_called()
        assert classifier.stats.stage1_accepts == 1

    def test_low_stage1_escalates_and_stage2_overrides(self):
        stage2 = StubStage(FieldType.PHONE_EXTENSION, 0.72)
        classifier = TwoStageClassifier(StubStage(FieldType.PHONE_NUMBER, 0.30), stage2)

        result = classifier.classify(FIELD)

        assert result.source == ResultSource.STAGE2
        assert result.field_type == FieldType.PHONE_EXTENSION
        assert result.confidence == pytest.approx(0.72)
        assert result.details["stage1_type"] == "phone_number"
        assert len(stage2.contexts) == 1
        assert classifier.stats.stage2_escalations == 1
        assert classifier.stats.stage2_overrides == 1

    def test_stage2_at_threshold_is_accepted(self):
        classifier = TwoStageClassifier(
            StubStage(FieldType.PHONE_NUMBER, 0.30),
            StubStage(FieldType.PHONE_EXTENSION, 0.60),
        )
        assert classifier.classify(FIELD).source == ResultSource.STAGE2

    def test_weak_stage2_keeps_stage1_guess(self):
        classifier = TwoStageClassifier(
            StubStage(FieldType.PHONE_NUMBER, 0.30),
            StubStage(FieldType.PHONE_EXTENSION, 0.59),
        )

        result = classifier.classify(FIELD)

        assert result.source == ResultSource.STAGE1
        assert result.field_type == FieldType.PHONE_NUMBER
        assert result.confidence == pytest.approx(0.30)
        assert result.details["stage2_similarity"] == pytest.approx(0.59)

    def test_unknown_stage2_never_overrides(self):
        classifier = TwoStageClassifier(
            StubStage(FieldType.PHONE_NUMBER, 0.30),
            StubStage(FieldType.UNKNOWN, 0.95),
        )
        assert classifier.classify(FIELD).field_type == FieldType.PHONE_NUMBER

    def test_custom_thresholds(self):
        classifier = TwoStageClassifier(
            StubStage(FieldType.PHONE_NUMBER, 0.50),
            StubStage(FieldType.PHONE_EXTENSION, 0.90),
            stage1_threshold=0.80,
        )
        assert classifier.classify(FIELD).source == ResultSource.STAGE2


class TestFailures:
    def test_stage1_failure_is_unknown(self):
        stage1 = FailingStage()
        classifier = TwoStageClassifier(stage1, StubStage(FieldType.CITY, 0.9))

        result = classifier.classify(FIELD)

        assert result.field_type == FieldType.UNKNOWN
        assert result.confidence == 0.0
        assert "classifier_error" in result.details["reason"]
        assert classifier.stats.errors == 1

    def test_stage2_failure_keeps_stage1(self):
        classifier = TwoStageClassifier(StubStage(FieldType.PHONE_NUMBER, 0.30), FailingStage())

        result = classifier.classify(FIELD)

        assert result.source == ResultSource.STAGE1
        assert result.field_type == FieldType.PHONE_NUMBER
        assert classifier.stats.errors == 1

    def test_context_passed_to_stage(self):
        stage1 = StubStage(FieldType.PHONE_EXTENSION, 0.9)
        TwoStageClassifier(stage1).classify(FIELD)

        assert stage1.contexts == [
            "This form field asks for: Extension. It is a text input field"
        ]


def keyword_embedding(texts):
    """Counts of 'email' and 'city' per text."""
    return [[t.lower().count("email"), t.lower().count("city")] for t in texts]


class TestEmbeddingStage:
    def test_closest_centroid_wins(self):
        stage = EmbeddingStage(embed_fn=keyword_embedding)

        result = stage.classify("This form field asks for: Email address")

        assert result.field_type == FieldType.EMAIL
        assert result.confidence == pytest.approx(1.0, abs=1e-5)

    def test_no_positive_similarity_is_unknown(self):
        stage = EmbeddingStage(embed_fn=keyword_embedding)

        result = stage.classify("Favorite color")

        assert result.field_type == FieldType.UNKNOWN
        assert result.confidence == 0.0

    def test_centroids_built_once(self):
        embed = Mock(side_effect=keyword_embedding)
        stage = EmbeddingStage(embed_fn=embed)

        stage.classify("email")
        calls_after_first = embed.call_count
        stage.classify("email again")

        assert embed.call_count == calls_after_first + 1


class TestZeroShotStage:
    def test_model_label_mapped_to_field_type(self):
        stage = ZeroShotStage()
        stage._pipeline = Mock(return_value={
            "labels": ["an email address", "a phone number"],
            "scores": [0.81, 0.11],
        })

        result = stage.classify("This form field asks for: Email")

        assert result == StageResult(FieldType.EMAIL, 0.81, {"model_label": "an email address"})
        kwargs = stage._pipeline.call_args.kwargs
        assert kwargs["hypothesis_template"] == "This form field collects {}"
        assert kwargs["multi_label"] is False

    def test_failed_load_is_not_retried(self):
        stage = ZeroShotStage(model_name="missing/model", use_gpu=False)
        target = "jobfill.services.field_classification.semantic_classifier.select_device"

        with patch(target, side_effect=OSError("no such model")) as select_device:
            with pytest.raises(OSError):
                stage.classify("anything")
            with pytest.raises(RuntimeError, match="unavailable"):
                stage.classify("anything")

        assert select_device.call_count == 1
        assert not stage.is_loaded
