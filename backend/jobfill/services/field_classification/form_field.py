"""
Form Field Model
================

The snapshot of one discovered form control as handed over by the DOM
discovery layer, plus the classification result produced for it.

Design Principles:
------------------
- FormField is frozen: the cache and classifiers read it, never mutate it
- Options are normalized to plain strings at construction
- Every classification result names the layer that produced it (ResultSource)

The discovery layer emits camelCase JSON (``labelText``, ``sectionHeader``);
``FormField.from_dict`` accepts both that and snake_case.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .field_types import FieldType

logger = logging.getLogger(__name__)


class ElementKind(str, Enum):
    """Kinds of form controls reported by the discovery layer."""
    TEXT = "text"
    TEXTAREA = "textarea"
    DROPDOWN = "dropdown"
    SEARCHABLE = "searchable"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    CHECKBOX_GROUP = "checkbox-group"
    FILE = "file"


class ResultSource(str, Enum):
    """Which layer produced a classification result."""
    GLOBAL = "global"
    PLATFORM = "platform"
    QUESTION = "question"
    LEARNED = "learned"
    RUNTIME = "runtime"
    STAGE1 = "stage1_zero_shot"
    STAGE2 = "stage2_semantic"
    VERIFIER = "verifier"
    FALLBACK = "fallback"

    @property
    def is_cache_level(self) -> bool:
        return self in _CACHE_LEVELS

    @property
    def is_expensive(self) -> bool:
        """Results worth persisting in the learned store."""
        return self in (ResultSource.STAGE1, ResultSource.STAGE2, ResultSource.VERIFIER)


_CACHE_LEVELS = (
    ResultSource.GLOBAL,
    ResultSource.PLATFORM,
    ResultSource.QUESTION,
    ResultSource.LEARNED,
    ResultSource.RUNTIME,
)

# Phrases used when describing the element kind to a classifier
_KIND_PHRASES: Dict[str, str] = {
    ElementKind.TEXT.value: "It is a text input field",
    ElementKind.TEXTAREA.value: "It is a multi-line text area",
    ElementKind.DROPDOWN.value: "It is a dropdown selection",
    ElementKind.SEARCHABLE.value: "It is a searchable dropdown",
    ElementKind.CHECKBOX.value: "It is a checkbox",
    ElementKind.CHECKBOX_GROUP.value: "It is a group of checkboxes",
    ElementKind.RADIO.value: "It is a radio button choice",
    ElementKind.FILE.value: "It is a file upload",
}


def _option_text(option: Any) -> str:
    if isinstance(option, dict):
        return str(option.get("label") or option.get("value") or "")
    return str(option)


@dataclass(frozen=True)
class FormField:
    """
    One discovered form control.

    ``element_type`` carries the discovery layer's ``type`` value
    (text/dropdown/radio/checkbox/checkbox-group/file).
    """
    label: str = ""
    id: str = ""
    name: str = ""
    element_type: str = ""
    options: Tuple[str, ...] = ()
    section: str = ""
    placeholder: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormField":
        """Create from a discovery-layer dictionary."""
        options = data.get("options") or []
        return cls(
            label=data.get("label") or data.get("labelText") or "",
            id=data.get("id") or "",
            name=data.get("name") or "",
            element_type=data.get("type") or data.get("element_type") or "",
            options=tuple(_option_text(o) for o in options),
            section=data.get("section") or data.get("sectionHeader") or data.get("context") or "",
            placeholder=data.get("placeholder") or "",
        )

    @property
    def identifier(self) -> str:
        """Structural identifier: id, falling back to name."""
        return self.id or self.name

    @property
    def display_name(self) -> str:
        return (self.label or self.identifier or "(unlabeled)")[:60]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "id": self.id,
            "name": self.name,
            "type": self.element_type,
            "options": list(self.options),
            "section": self.section,
            "placeholder": self.placeholder,
        }


@dataclass
class ClassificationResult:
    """
    Result of classifying a single field.

    Confidence is clamped to [0, 1] after initialization.
    """
    field_type: FieldType
    confidence: float
    source: ResultSource
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))

    @property
    def is_unknown(self) -> bool:
        return self.field_type == FieldType.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "field_type": self.field_type.value,
            "confidence": round(self.confidence, 4),
            "source": self.source.value,
        }


def unknown_result(source: ResultSource = ResultSource.FALLBACK, reason: Optional[str] = None) -> ClassificationResult:
    """Create the result used for misses and classifier failures."""
    details = {"reason": reason} if reason else {}
    return ClassificationResult(
        field_type=FieldType.UNKNOWN,
        confidence=0.0,
        source=source,
        details=details,
    )


def readable_identifier(identifier: str) -> str:
    """
    Turn a structural id into words.

    "legalName--firstName" -> "legal name first name"
    """
    text = identifier.replace("--", " ")
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    text = re.sub(r"[-_]", " ", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def build_field_context(form_field: FormField) -> str:
    """
    Build the natural-language description of a field fed to the
    classifier stages.

    Args:
        form_field: The field to describe

    Returns:
        Sentences joined by ". ", or "Unknown form field" when the field
        carries nothing usable
    """
    parts: List[str] = []

    clean_label = form_field.label.replace("*", "").strip()
    if clean_label:
        parts.append(f"This form field asks for: {clean_label}")

    kind_phrase = _KIND_PHRASES.get(form_field.element_type)
    if kind_phrase:
        parts.append(kind_phrase)

    if form_field.section.strip():
        parts.append(f'Located in the "{form_field.section.strip()[:150]}" section')

    if form_field.placeholder.strip():
        parts.append(f"Placeholder text: {form_field.placeholder.strip()}")

    if form_field.options:
        parts.append(f"Options include: {', '.join(form_field.options[:4])}")

    # Fallback - use the id when there is no label
    if not clean_label and form_field.identifier:
        parts.append(f"Form field with ID: {readable_identifier(form_field.identifier)}")

    return ". ".join(parts) or "Unknown form field"
