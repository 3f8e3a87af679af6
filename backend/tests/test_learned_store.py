"""Tests for the file-backed learned pattern store."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from jobfill.services.field_classification import (
    FieldType,
    FormField,
    LearnedPatternStore,
    Platform,
    build_learned_key,
    build_loose_key,
)
from jobfill.services.field_classification.learned_store import (
    normalize_id_fragment,
    normalize_label,
)


# Everything an entry may carry: type plus provenance, never an answer
ENTRY_KEYS = {
    "type", "learnedFrom", "learnedAt", "platform", "company",
    "originalLabel", "originalId", "verified", "verifiedAt", "verifiedBy",
    "usageCount", "lastUsedAt", "correctedFrom",
}

EXTENSION_FIELD = FormField(label="Extension", id="phoneNumber--extension", element_type="text")


def read_file(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class TestKeys:
    def test_normalize_label(self):
        assert normalize_label("First Name*:") == "first_name"
        assert normalize_label("  Years   of Experience ") == "years_of_experience"

    def test_long_label_truncated_with_digest(self):
        normalized = normalize_label("word " * 40)

        assert len(normalized) == 50 + 1 + 8
        assert normalized.startswith(("word_" * 10)[:50])
        assert normalized == normalize_label("Word " * 40)

    def test_punctuation_only_label_has_no_label_part(self):
        field = FormField(label="*:", id="customQuestions--q17", element_type="text")

        assert build_learned_key(field, Platform.WORKDAY) == "workday|id:q17|type:text"
        assert build_loose_key(field, Platform.WORKDAY) is None
        assert build_learned_key(FormField(label="**"), Platform.WORKDAY) is None

    def test_id_fragment_keeps_last_segment(self):
        assert normalize_id_fragment("personalInfo--a1b2c3d4e5--phoneNumber--extension") == "extension"

    def test_id_fragment_masks_generated_hex(self):
        assert normalize_id_fragment("input-1A2B3C4D5E6F") == "input-*"

    def test_exact_key_format(self):
        key = build_learned_key(EXTENSION_FIELD, Platform.WORKDAY)
        assert key == "workday|label:extension|id:extension|type:text"

    def test_exact_key_uses_name_without_id(self):
        key = build_learned_key(FormField(name="gpaScore"), Platform.UNKNOWN)
        assert key == "unknown|id:gpascore"

    def test_no_key_without_label_or_id(self):
        assert build_learned_key(FormField(element_type="text"), Platform.WORKDAY) is None

    def test_loose_key(self):
        assert build_loose_key(EXTENSION_FIELD, Platform.WORKDAY) == "workday|label:extension"

    @pytest.mark.parametrize("label", ["Select One", "select one*", "Yes", ""])
    def test_generic_labels_have_no_loose_key(self, label):
        assert build_loose_key(FormField(label=label), Platform.WORKDAY) is None


CLEARANCE_QUESTION = FormField(
    label="Please confirm whether you currently hold an active Secret clearance",
    id="primaryQuestionnaire--1a2b3c4d5e6f",
    element_type="dropdown",
)
LICENSE_QUESTION = FormField(
    label="Please confirm whether you currently hold an active driver's license",
    id="primaryQuestionnaire--9f8e7d6c5b4a",
    element_type="dropdown",
)


class TestKeyDistinctness:
    @pytest.mark.parametrize("first, second", [
        (FormField(label="State", id="address--countryRegion", element_type="dropdown"),
         FormField(label="Country", id="address--country", element_type="dropdown")),
        (FormField(label="State"), FormField(label="Country")),
        (CLEARANCE_QUESTION, LICENSE_QUESTION),
        (FormField(label="x" * 60 + " before"), FormField(label="x" * 60 + " after")),
    ])
    def test_different_fields_get_different_keys(self, first, second):
        assert build_learned_key(first, Platform.WORKDAY) != build_learned_key(second, Platform.WORKDAY)
        assert build_loose_key(first, Platform.WORKDAY) != build_loose_key(second, Platform.WORKDAY)

    def test_long_questions_sharing_a_prefix_do_not_collide(self, learned_store):
        learned_store.learn(CLEARANCE_QUESTION, FieldType.MEETS_JOB_REQUIREMENTS, "verifier", Platform.WORKDAY)

        assert learned_store.lookup(LICENSE_QUESTION, Platform.WORKDAY) is None
        match = learned_store.lookup(CLEARANCE_QUESTION, Platform.WORKDAY)
        assert match.entry.field_type == FieldType.MEETS_JOB_REQUIREMENTS
        assert match.exact is True


class TestPersistence:
    def test_missing_file_is_empty_store(self, learned_store_path):
        store = LearnedPatternStore(learned_store_path)

        assert len(store) == 0
        assert not learned_store_path.exists()

    def test_learn_writes_file(self, learned_store, learned_store_path):
        assert learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "stage2_semantic", Platform.WORKDAY, "acme")

        data = read_file(learned_store_path)
        entry = data["workday|label:extension|id:extension|type:text"]
        assert entry["type"] == "phone_extension"
        assert entry["learnedFrom"] == "stage2_semantic"
        assert entry["platform"] == "workday"
        assert entry["company"] == "acme"
        assert entry["originalLabel"] == "Extension"
        assert entry["originalId"] == "phoneNumber--extension"
        assert entry["verified"] is False
        assert not learned_store_path.with_name(learned_store_path.name + ".tmp").exists()

    def test_entries_hold_no_profile_values(self, learned_store, learned_store_path, sample_profile):
        learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)
        learned_store.learn(FormField(label="Email"), FieldType.EMAIL, "stage1_zero_shot", Platform.WORKDAY)

        raw = learned_store_path.read_text(encoding="utf-8")
        for entry in json.loads(raw).values():
            assert set(entry) <= ENTRY_KEYS
        for value in ("Jane", "jane.doe@example.com", "555-0142", "97201"):
            assert value not in raw

    def test_reload_from_disk(self, learned_store, learned_store_path):
        learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "stage2_semantic", Platform.WORKDAY)

        reloaded = LearnedPatternStore(learned_store_path)
        match = reloaded.lookup(EXTENSION_FIELD, Platform.WORKDAY)

        assert match.entry.field_type == FieldType.PHONE_EXTENSION
        assert match.exact is True

    def test_corrupt_file_is_ignored_with_warning(self, learned_store_path, caplog):
        learned_store_path.parent.mkdir(parents=True)
        learned_store_path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            store = LearnedPatternStore(learned_store_path)

        assert len(store) == 0
        assert "Could not load learned patterns" in caplog.text

    def test_invalid_entries_skipped(self, learned_store_path, caplog):
        learned_store_path.parent.mkdir(parents=True)
        learned_store_path.write_text(json.dumps({
            "workday|label:city": {"type": "city", "learnedFrom": "verifier", "learnedAt": "2026-01-01T00:00:00+00:00"},
            "workday|label:shoe_size": {"type": "shoe_size"},
        }), encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            store = LearnedPatternStore(learned_store_path)

        assert len(store) == 1
        assert "workday|label:city" in store
        assert "shoe_size" in caplog.text

    def test_legacy_ats_key(self, learned_store_path):
        learned_store_path.parent.mkdir(parents=True)
        learned_store_path.write_text(json.dumps({
            "taleo|label:city": {"type": "city", "ats": "taleo", "learnedAt": "2026-01-01T00:00:00+00:00"},
        }), encoding="utf-8")

        store = LearnedPatternStore(learned_store_path)

        assert store.get("taleo|label:city").platform == "taleo"

    def test_write_failure_keeps_memory_entry(self, tmp_path, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory", encoding="utf-8")
        store = LearnedPatternStore(blocker / "learned-patterns.json")

        with caplog.at_level(logging.WARNING):
            learned = store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)

        assert learned is True
        assert "Could not save learned patterns" in caplog.text
        assert store.lookup(EXTENSION_FIELD, Platform.WORKDAY).entry.field_type == FieldType.PHONE_EXTENSION
        assert store.save() is False


class TestLearning:
    def test_first_writer_wins(self, learned_store):
        assert learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "stage1_zero_shot", Platform.WORKDAY)
        assert not learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_NUMBER, "verifier", Platform.WORKDAY)
        assert not learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)

        assert len(learned_store) == 1
        assert learned_store.lookup(EXTENSION_FIELD, Platform.WORKDAY).entry.field_type == FieldType.PHONE_EXTENSION

    def test_unknown_is_never_learned(self, learned_store):
        assert not learned_store.learn(EXTENSION_FIELD, FieldType.UNKNOWN, "verifier", Platform.WORKDAY)
        assert len(learned_store) == 0

    def test_field_without_signature_is_not_learned(self, learned_store):
        assert not learned_store.learn(FormField(element_type="text"), FieldType.CITY, "verifier", Platform.WORKDAY)

    def test_platforms_are_separate(self, learned_store):
        learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)
        assert learned_store.lookup(EXTENSION_FIELD, Platform.TALEO) is None

    def test_loose_match_on_label(self, learned_store):
        learned_store.learn(
            FormField(label="Years of Experience", id="q1", element_type="text"),
            FieldType.YEARS_OF_EXPERIENCE, "stage1_zero_shot", Platform.UNKNOWN,
        )

        match = learned_store.lookup(FormField(label="Years of Experience", id="q2", element_type="text"), Platform.UNKNOWN)

        assert match.exact is False
        assert match.entry.field_type == FieldType.YEARS_OF_EXPERIENCE

    def test_generic_label_never_matches_loosely(self, learned_store):
        learned_store.learn(FormField(label="Select One", id="a--gender"), FieldType.GENDER, "verifier", Platform.UNKNOWN)

        assert learned_store.lookup(FormField(label="Select One", id="b--veteran"), Platform.UNKNOWN) is None

    def test_lookup_counts_usage(self, learned_store):
        learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)

        learned_store.lookup(EXTENSION_FIELD, Platform.WORKDAY)
        match = learned_store.lookup(EXTENSION_FIELD, Platform.WORKDAY)

        assert match.entry.usage_count == 3
        assert match.entry.last_used_at is not None

    def test_auto_verify_in_development(self, learned_store_path):
        store = LearnedPatternStore(learned_store_path, auto_verify=True)
        store.learn(EXTENSION_FIELD, FieldType.PHONE_EXTENSION, "verifier", Platform.WORKDAY)

        entry = store.lookup(EXTENSION_FIELD, Platform.WORKDAY).entry
        assert entry.verified is True
        assert entry.verified_by == LearnedPatternStore.AUTO_VERIFIED_BY


class TestReview:
    KEY = "workday|label:extension|id:extension|type:text"

    @pytest.fixture
    def store(self, learned_store):
        learned_store.learn(EXTENSION_FIELD, FieldType.PHONE_NUMBER, "stage1_zero_shot", Platform.WORKDAY)
        learned_store.learn(FormField(label="Desired Salary"), FieldType.DESIRED_SALARY, "verifier", Platform.WORKDAY)
        return learned_store

    def test_verify(self, store, learned_store_path):
        assert store.verify(self.KEY, verified_by="reviewer")

        entry = read_file(learned_store_path)[self.KEY]
        assert entry["verified"] is True
        assert entry["verifiedBy"] == "reviewer"
        assert entry["verifiedAt"]

    def test_verify_missing_key(self, store):
        assert store.verify("workday|label:nope") is False

    def test_reject(self, store, learned_store_path):
        assert store.reject(self.KEY)

        assert self.KEY not in store
        assert self.KEY not in read_file(learned_store_path)
        assert store.lookup(EXTENSION_FIELD, Platform.WORKDAY) is None

    def test_update_type_records_correction(self, store, learned_store_path):
        assert store.update_type(self.KEY, FieldType.PHONE_EXTENSION, verified_by="reviewer")

        entry = read_file(learned_store_path)[self.KEY]
        assert entry["type"] == "phone_extension"
        assert entry["correctedFrom"] == "phone_number"
        assert entry["verified"] is True

    def test_unverified_lists_newest_first(self, store):
        store.get(self.KEY).learned_at = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

        keys = [item.key for item in store.unverified()]
        assert keys == ["workday|label:desired_salary", self.KEY]

        store.verify(self.KEY)
        assert [item.key for item in store.unverified()] == ["workday|label:desired_salary"]

    def test_recent_excludes_old_entries(self, store):
        store.get(self.KEY).learned_at = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat()

        assert [item.key for item in store.recent(days=7)] == ["workday|label:desired_salary"]

    def test_review_item_dict(self, store):
        item = store.all_entries()[0]
        data = item.to_dict()
        assert data["key"] == item.key
        assert data["type"] == item.entry.field_type.value

    def test_counts(self, store):
        store.verify(self.KEY)
        assert store.counts() == {"learned_patterns": 2, "verified_patterns": 1, "unverified_patterns": 1}
