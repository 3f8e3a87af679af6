"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from jobfill.main import app
from jobfill.routes.field_classification import get_pipeline
from jobfill.services.field_classification import (
    FieldType,
    FormField,
    FormFieldPipeline,
    HierarchicalCache,
    LearnedPatternStore,
    TwoStageClassifier,
)
from jobfill.services.field_classification.semantic_classifier import StageResult


WORKDAY_URL = "https://acme.wd1.myworkdayjobs.com/en-US/careers/job/Portland/Engineer_R123/apply"


class StubStage:
    """Deterministic classifier stage returning a fixed result."""

    def __init__(self, field_type: FieldType, confidence: float):
        self.field_type = field_type
        self.confidence = confidence
        self.contexts: List[str] = []

    def classify(self, context: str) -> StageResult:
        self.contexts.append(context)
        return StageResult(field_type=self.field_type, confidence=self.confidence)


class FailingStage:
    """Stage whose model never loads."""

    def __init__(self, error: Exception = None):
        self.error = error or RuntimeError("model unavailable")
        self.calls = 0

    def classify(self, context: str) -> StageResult:
        self.calls += 1
        raise self.error


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def learned_store_path(tmp_path) -> Path:
    """Learned pattern file inside the test's temporary directory."""
    return tmp_path / "cache" / "learned-patterns.json"


@pytest.fixture
def learned_store(learned_store_path) -> LearnedPatternStore:
    return LearnedPatternStore(learned_store_path)


@pytest.fixture
def cache(learned_store) -> HierarchicalCache:
    return HierarchicalCache(learned_store)


@pytest.fixture
def sample_profile() -> Dict[str, Any]:
    """Applicant profile with the groups the resolver reads.

    Returns:
        dict: Sample profile
    """
    return {
        "personal": {
            "firstName": "Jane",
            "lastName": "Doe",
            "email": "jane.doe@example.com",
            "phone": "(503) 555-0142",
            "citizenship": "United States",
            "linkedIn": "",
        },
        "address": {
            "line1": "100 Main St",
            "city": "Portland",
            "state": "OR",
            "zipCode": "97201",
            "country": "United States",
        },
        "workAuth": {
            "authorizedToWork": True,
            "requiresSponsorship": False,
            "isUSCitizenOrPR": True,
        },
        "education": {
            "school": "Oregon State University",
            "degree": "Bachelor's Degree",
        },
        "additional": {
            "over18": True,
            "hasRelativeAtCompany": False,
        },
        "referral": {"source": "LinkedIn"},
        "documents": {"linkedin": "https://linkedin.com/in/janedoe"},
    }


@pytest.fixture
def unseen_field() -> FormField:
    """A field no static rule knows about."""
    return FormField(
        label="Preferred pronouns",
        id="customQuestions--pronouns",
        element_type="dropdown",
        options=("She/her", "He/him", "They/them"),
    )


@pytest.fixture
def make_pipeline(cache, sample_profile):
    """Factory for pipelines over the shared cache with stub stages."""

    def _make(stage1=None, stage2=None, **kwargs) -> FormFieldPipeline:
        classifier = None
        if stage1 is not None:
            classifier = TwoStageClassifier(stage1=stage1, stage2=stage2)
        kwargs.setdefault("profile", sample_profile)
        return FormFieldPipeline(cache, classifier=classifier, **kwargs)

    return _make


@pytest.fixture
def api_pipeline(make_pipeline) -> FormFieldPipeline:
    """Pipeline served by the API in tests."""
    pipeline = make_pipeline(stage1=StubStage(FieldType.REFERRAL_SOURCE, 0.8))
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    return pipeline
