"""
Learned Pattern Store
=====================

Persistent, file-backed mapping from a field signature to a FieldType,
populated whenever an expensive classifier (zero-shot, embedding, or the
remote verifier) resolves a field.

CRITICAL INVARIANT:
-------------------
An entry stores the TYPE and provenance only, never the user's answer or any
profile value. That is what makes the file safe to keep across sessions and
share across users.

Write Policy:
-------------
- First writer wins: an existing key is never overwritten by ``learn``
- Learning and review changes are flushed to disk immediately; usage
  counters are bumped in memory and flushed by the caller
- A missing file is an empty store; a corrupt file is logged and ignored
- Write failures are logged as warnings; the in-memory entry survives

File Format:
------------
A flat JSON object keyed by signature, pretty-printed and key-sorted so it
diffs cleanly under version control::

    {
      "workday|label:extension|id:extension|type:text": {
        "type": "phone_extension",
        "learnedFrom": "stage2_semantic",
        "learnedAt": "2026-10-19T12:00:00+00:00",
        "platform": "workday",
        ...
      }
    }

Review:
-------
Entries carry verification state so a human can periodically review what was
learned: ``unverified()``/``recent()`` list candidates, ``verify``,
``reject`` and ``update_type`` act on them.
"""

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .field_types import FieldType, ONTOLOGY
from .form_field import FormField
from .platform_detection import Platform, UNKNOWN_COMPANY

logger = logging.getLogger(__name__)

MAX_LABEL_KEY_LENGTH = 50
LABEL_DIGEST_LENGTH = 8

_LABEL_SEPARATORS = re.compile(r"[*:\s]+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_HEX_RUN = re.compile(r"[0-9a-f]{8,}", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_label(label: str) -> str:
    """
    Normalize a label for use in a key.

    "First Name*:" -> "first_name"
    Labels longer than MAX_LABEL_KEY_LENGTH keep their prefix plus a short
    digest of the full text, so long questions sharing a prefix stay apart.
    """
    normalized = _LABEL_SEPARATORS.sub("_", label.lower())
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized).strip("_")
    if len(normalized) <= MAX_LABEL_KEY_LENGTH:
        return normalized
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:LABEL_DIGEST_LENGTH]
    return f"{normalized[:MAX_LABEL_KEY_LENGTH]}_{digest}"


def normalize_id_fragment(identifier: str) -> str:
    """
    Keep the meaningful tail of a structural id.

    "personalInfo--a1b2c3d4e5--phoneNumber--extension" -> "extension"
    UUID-like hex runs become "*" so generated ids still match.
    """
    last_part = identifier.split("--")[-1]
    return _HEX_RUN.sub("*", last_part).lower()


def build_learned_key(form_field: FormField, platform: Platform) -> Optional[str]:
    """
    Build the exact signature key for a field.

    Format: ``platform|label:<label>|id:<id fragment>|type:<element kind>``
    (label, id and type parts present only when the field has them).

    Returns:
        The key, or None when the field has neither a usable label nor an id
    """
    label = normalize_label(form_field.label)
    if not label and not form_field.identifier:
        return None

    parts = [platform.value]
    if label:
        parts.append(f"label:{label}")
    if form_field.identifier:
        parts.append(f"id:{normalize_id_fragment(form_field.identifier)}")
    if form_field.element_type:
        parts.append(f"type:{form_field.element_type}")
    return "|".join(parts)


def build_loose_key(form_field: FormField, platform: Platform) -> Optional[str]:
    """
    Build the label-only key used when the exact key misses.

    Generic labels ("Select One") never produce a loose key.
    """
    if ONTOLOGY.is_generic_label(form_field.label):
        return None
    label = normalize_label(form_field.label)
    if not label:
        return None
    return f"{platform.value}|label:{label}"


@dataclass
class LearnedPatternEntry:
    """One persisted signature -> type mapping with provenance."""
    field_type: FieldType
    learned_from: str
    learned_at: str
    platform: str
    original_label: str = ""
    original_id: str = ""
    company: str = UNKNOWN_COMPANY

    # Verification tracking
    verified: bool = False
    verified_at: Optional[str] = None
    verified_by: Optional[str] = None
    corrected_from: Optional[str] = None

    # Usage tracking
    usage_count: int = 0
    last_used_at: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        """Serialize with the file's camelCase keys."""
        data: Dict[str, Any] = {
            "type": self.field_type.value,
            "learnedFrom": self.learned_from,
            "learnedAt": self.learned_at,
            "platform": self.platform,
            "company": self.company,
            "originalLabel": self.original_label,
            "originalId": self.original_id,
            "verified": self.verified,
            "verifiedAt": self.verified_at,
            "verifiedBy": self.verified_by,
            "usageCount": self.usage_count,
            "lastUsedAt": self.last_used_at,
        }
        if self.corrected_from:
            data["correctedFrom"] = self.corrected_from
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "LearnedPatternEntry":
        """
        Deserialize an entry.

        Raises:
            ValueError: if the stored type is not a known FieldType
        """
        return cls(
            field_type=FieldType(data["type"]),
            learned_from=data.get("learnedFrom", "unknown"),
            learned_at=data.get("learnedAt", ""),
            platform=data.get("platform") or data.get("ats") or Platform.UNKNOWN.value,
            original_label=data.get("originalLabel") or "",
            original_id=data.get("originalId") or "",
            company=data.get("company") or UNKNOWN_COMPANY,
            verified=bool(data.get("verified", False)),
            verified_at=data.get("verifiedAt"),
            verified_by=data.get("verifiedBy"),
            corrected_from=data.get("correctedFrom"),
            usage_count=int(data.get("usageCount") or 0),
            last_used_at=data.get("lastUsedAt"),
        )


@dataclass
class LearnedMatch:
    """A learned-store hit."""
    key: str
    entry: LearnedPatternEntry
    exact: bool


@dataclass
class ReviewItem:
    """An entry paired with its key, for review listings."""
    key: str
    entry: LearnedPatternEntry

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, **self.entry.to_json()}


class LearnedPatternStore:
    """
    File-backed learned pattern store.

    Loaded eagerly and held fully in memory; the practical pattern count is
    hundreds to low thousands.
    """

    AUTO_VERIFIED_BY = "auto_development"

    def __init__(self, path: Union[str, Path], auto_verify: bool = False):
        """
        Initialize the store.

        Args:
            path: JSON file holding the learned patterns
            auto_verify: Mark newly learned patterns as verified (development phase)
        """
        self.path = Path(path)
        self.auto_verify = auto_verify
        self._entries: Dict[str, LearnedPatternEntry] = self._load()
        self._loose_index: Dict[str, str] = {}
        self._rebuild_loose_index()

        verified = sum(1 for e in self._entries.values() if e.verified)
        logger.info(
            f"Loaded {len(self._entries)} learned patterns from {self.path} "
            f"({verified} verified, {len(self._entries) - verified} unverified)"
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, LearnedPatternEntry]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load learned patterns from {self.path}: {e}")
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Learned pattern file {self.path} is not a JSON object, ignoring it")
            return {}

        entries: Dict[str, LearnedPatternEntry] = {}
        for key, data in raw.items():
            try:
                entries[key] = LearnedPatternEntry.from_json(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid learned pattern '{key}': {e}")
        return entries

    def save(self) -> bool:
        """
        Flush all entries to disk.

        Writes to a temporary file and renames it over the target so a crash
        mid-write never leaves a truncated store.

        Returns:
            True on success, False if the write failed (logged as a warning)
        """
        payload = {key: entry.to_json() for key, entry in self._entries.items()}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Could not save learned patterns to {self.path}: {e}")
            return False
        return True

    def _rebuild_loose_index(self):
        self._loose_index.clear()
        for key in sorted(self._entries, key=lambda k: self._entries[k].learned_at):
            self._index_loose(key)

    def _index_loose(self, key: str):
        entry = self._entries[key]
        loose_key = build_loose_key(
            FormField(label=entry.original_label),
            self._platform_of(entry),
        )
        if loose_key:
            # First writer wins for the loose index too
            self._loose_index.setdefault(loose_key, key)

    @staticmethod
    def _platform_of(entry: LearnedPatternEntry) -> Platform:
        try:
            return Platform(entry.platform)
        except ValueError:
            return Platform.UNKNOWN

    # ------------------------------------------------------------------
    # Lookup / learn
    # ------------------------------------------------------------------

    def lookup(self, form_field: FormField, platform: Platform) -> Optional[LearnedMatch]:
        """
        Look up a field: exact signature first, then the label-only key.

        Records usage on a hit (in memory; persisted with the next flush).
        """
        key = build_learned_key(form_field, platform)
        if key is None:
            return None

        match: Optional[LearnedMatch] = None
        if key in self._entries:
            match = LearnedMatch(key=key, entry=self._entries[key], exact=True)
        else:
            loose_key = build_loose_key(form_field, platform)
            target = self._loose_index.get(loose_key) if loose_key else None
            if target is not None and target in self._entries:
                match = LearnedMatch(key=target, entry=self._entries[target], exact=False)

        if match is not None:
            match.entry.usage_count += 1
            match.entry.last_used_at = _utcnow().isoformat()
        return match

    def learn(
        self,
        form_field: FormField,
        field_type: FieldType,
        source: str,
        platform: Platform,
        company: str = UNKNOWN_COMPANY,
    ) -> bool:
        """
        Persist a field signature -> type mapping.

        No-op when the key already exists (first writer wins), when the type
        is UNKNOWN, or when the field has no usable signature.

        Returns:
            True if a new entry was written to memory
        """
        if field_type == FieldType.UNKNOWN:
            return False

        key = build_learned_key(form_field, platform)
        if key is None:
            logger.debug(f"Field '{form_field.display_name}' has no signature, not learning")
            return False

        if key in self._entries:
            existing = self._entries[key].field_type
            if existing != field_type:
                logger.info(
                    f"Keeping learned '{key}' -> {existing.value}; "
                    f"ignoring later {field_type.value} from {source}"
                )
            return False

        now = _utcnow().isoformat()
        self._entries[key] = LearnedPatternEntry(
            field_type=field_type,
            learned_from=source,
            learned_at=now,
            platform=platform.value,
            original_label=form_field.label,
            original_id=form_field.identifier,
            company=company,
            verified=self.auto_verify,
            verified_at=now if self.auto_verify else None,
            verified_by=self.AUTO_VERIFIED_BY if self.auto_verify else None,
            usage_count=1,
            last_used_at=now,
        )
        self._index_loose(key)

        status = "auto-verified" if self.auto_verify else "needs review"
        logger.info(f"LEARNED: '{key}' -> {field_type.value} ({status})")

        self.save()
        return True

    # ------------------------------------------------------------------
    # Review operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[LearnedPatternEntry]:
        return self._entries.get(key)

    def verify(self, key: str, verified_by: str = "manual") -> bool:
        """Mark a pattern as human-verified."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.verified = True
        entry.verified_at = _utcnow().isoformat()
        entry.verified_by = verified_by
        self.save()
        return True

    def reject(self, key: str) -> bool:
        """Delete an incorrect pattern."""
        if key not in self._entries:
            return False
        del self._entries[key]
        self._rebuild_loose_index()
        logger.info(f"Rejected learned pattern '{key}'")
        self.save()
        return True

    def update_type(self, key: str, field_type: FieldType, verified_by: str = "manual") -> bool:
        """Correct a pattern's type; the correction counts as verification."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.field_type != field_type:
            entry.corrected_from = entry.field_type.value
        entry.field_type = field_type
        entry.verified = True
        entry.verified_at = _utcnow().isoformat()
        entry.verified_by = verified_by
        logger.info(f"Corrected learned pattern '{key}' -> {field_type.value}")
        self.save()
        return True

    def all_entries(self) -> List[ReviewItem]:
        return [ReviewItem(key=k, entry=e) for k, e in self._entries.items()]

    def unverified(self) -> List[ReviewItem]:
        """Unverified patterns, most recently learned first."""
        items = [item for item in self.all_entries() if not item.entry.verified]
        return self._newest_first(items)

    def recent(self, days: int = 7) -> List[ReviewItem]:
        """Patterns learned within the last ``days`` days, newest first."""
        cutoff = _utcnow() - timedelta(days=days)
        items = []
        for item in self.all_entries():
            learned_at = _parse_timestamp(item.entry.learned_at)
            if learned_at is not None and learned_at > cutoff:
                items.append(item)
        return self._newest_first(items)

    @staticmethod
    def _newest_first(items: List[ReviewItem]) -> List[ReviewItem]:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            items,
            key=lambda item: _parse_timestamp(item.entry.learned_at) or epoch,
            reverse=True,
        )

    def counts(self) -> Dict[str, int]:
        verified = sum(1 for e in self._entries.values() if e.verified)
        return {
            "learned_patterns": len(self._entries),
            "verified_patterns": verified,
            "unverified_patterns": len(self._entries) - verified,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
