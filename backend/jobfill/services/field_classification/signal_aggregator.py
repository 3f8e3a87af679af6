"""
Signal Aggregator
=================

Collects independent pieces of evidence about a field's type and combines
them into one proposal with an agreement category.

Signals (fixed confidence per source):
--------------------------------------
1. FIELD_ID  0.99  Structural id/name patterns; Workday ids are semantic
                   and consistent across every tenant
2. OPTIONS   0.95  Dropdown content ("Male"/"Female" means gender)
3. LABEL     0.85  Keyword match on the cleaned label
4. LOCAL_AI  classifier confidence x 0.60 (stage 1) or x 0.65 (stage 2)

Aggregation:
------------
Signals are grouped by type and confidence is summed per group; the highest
sum is the proposed type. Agreement:

- single:   exactly one signal
- full:     every signal names the same type
- majority: the winning group holds more than half the signals
- conflict: anything else

Conflict Resolution:
--------------------
When two or more signals at >= 0.85 agree with each other but an external
verifier names a different type, the verifier is not accepted blindly.
Targeted evidence checks run first; today only state vs country has one
(US state names in the options, or "state"/"province" in the label). Any
conflict without an evidence rule keeps the verifier's answer.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .field_types import FieldType
from .form_field import ClassificationResult, FormField, ResultSource
from .pattern_library import PatternRule, RuleSet

logger = logging.getLogger(__name__)

STRONG_SIGNAL_THRESHOLD = 0.85
AGREEMENT_BONUS = 0.02
MAX_AGGREGATE_CONFIDENCE = 0.99


class SignalSource(str, Enum):
    FIELD_ID = "field_id"
    OPTIONS = "options"
    LABEL = "label"
    LOCAL_AI = "local_ai"


SIGNAL_WEIGHTS: Dict[SignalSource, float] = {
    SignalSource.FIELD_ID: 0.99,
    SignalSource.OPTIONS: 0.95,
    SignalSource.LABEL: 0.85,
}

AI_STAGE_WEIGHTS: Dict[ResultSource, float] = {
    ResultSource.STAGE1: 0.60,
    ResultSource.STAGE2: 0.65,
}


class Agreement(str, Enum):
    NONE = "none"
    SINGLE = "single"
    FULL = "full"
    MAJORITY = "majority"
    CONFLICT = "conflict"


# Structural id/name rules; matched against id, then name
FIELD_ID_RULES = RuleSet("field_id", [
    # Personal
    PatternRule(10, r"--firstName$", FieldType.FIRST_NAME),
    PatternRule(30, r"--lastName$", FieldType.LAST_NAME),
    PatternRule(50, r"--middleName$", FieldType.MIDDLE_NAME),
    PatternRule(60, r"preferredName", FieldType.PREFERRED_NAME),

    # Address
    PatternRule(100, r"--addressLine1$", FieldType.ADDRESS_LINE_1),
    PatternRule(110, r"--addressLine2$", FieldType.ADDRESS_LINE_2),
    PatternRule(120, r"--city$", FieldType.CITY),
    PatternRule(130, r"--postalCode$", FieldType.POSTAL_CODE),
    PatternRule(140, r"--countryRegion$", FieldType.STATE),
    PatternRule(150, r"--country$", FieldType.COUNTRY),

    # Phone
    PatternRule(200, r"--phoneNumber$", FieldType.PHONE_NUMBER),
    PatternRule(210, r"--countryPhoneCode$", FieldType.COUNTRY_PHONE_CODE),
    PatternRule(220, r"--phoneExtension$", FieldType.PHONE_EXTENSION),
    PatternRule(230, r"phoneDeviceType", FieldType.PHONE_TYPE),

    # Education
    PatternRule(300, r"--school$", FieldType.SCHOOL),
    PatternRule(310, r"--fieldOfStudy$", FieldType.FIELD_OF_STUDY),
    PatternRule(320, r"--degree$", FieldType.DEGREE),
    PatternRule(330, r"--gpa$", FieldType.GPA),

    # EEO
    PatternRule(400, r"--gender$", FieldType.GENDER),
    PatternRule(410, r"--hispanicOrLatino$", FieldType.HISPANIC_LATINO),
    PatternRule(420, r"--veteranStatus$", FieldType.VETERAN_STATUS),
    PatternRule(430, r"--ethnicity", FieldType.RACE_ETHNICITY),

    # Disability form
    PatternRule(500, r"selfIdentifiedDisabilityData--name$", FieldType.FULL_NAME),
    PatternRule(510, r"disabilityStatus$", FieldType.DISABILITY_STATUS),
    PatternRule(520, r"dateSectionMonth", FieldType.DATE_MONTH),
    PatternRule(530, r"dateSectionDay", FieldType.DATE_DAY),
    PatternRule(540, r"dateSectionYear", FieldType.DATE_YEAR),
    PatternRule(550, r"dateSignedOn", FieldType.SIGNATURE_DATE),

    # Questionnaire
    PatternRule(600, r"previousWorker", FieldType.PREVIOUSLY_EMPLOYED),

    # Source
    PatternRule(700, r"--source$", FieldType.REFERRAL_SOURCE),

    # Documents
    PatternRule(800, r"resume", FieldType.RESUME_UPLOAD),
    PatternRule(810, r"coverLetter", FieldType.COVER_LETTER_UPLOAD),

    PatternRule(900, r"employeeId", FieldType.EMPLOYEE_ID),
])

# "anything--firstName" -> first_name, for ids no rule above knows
ID_SUFFIX_TYPES: Dict[str, FieldType] = {
    "firstname": FieldType.FIRST_NAME,
    "lastname": FieldType.LAST_NAME,
    "addressline1": FieldType.ADDRESS_LINE_1,
    "addressline2": FieldType.ADDRESS_LINE_2,
    "postalcode": FieldType.POSTAL_CODE,
    "phonenumber": FieldType.PHONE_NUMBER,
    "countryregion": FieldType.STATE,
}

# Matched against the label after removing "*", "required" and "select one"
LABEL_RULES = RuleSet("label", [
    PatternRule(10, r"^first\s*name", FieldType.FIRST_NAME),
    PatternRule(20, r"^last\s*name|^surname", FieldType.LAST_NAME),
    PatternRule(30, r"^phone\s*number(?!.*code)(?!.*country)", FieldType.PHONE_NUMBER),
    PatternRule(40, r"country\s*phone\s*code|phone\s*code", FieldType.COUNTRY_PHONE_CODE),
    PatternRule(50, r"address\s*line\s*1|^street\s*address", FieldType.ADDRESS_LINE_1),
    PatternRule(60, r"address\s*line\s*2", FieldType.ADDRESS_LINE_2),
    PatternRule(70, r"^city$", FieldType.CITY),
    PatternRule(80, r"^state|^province", FieldType.STATE),
    PatternRule(90, r"postal\s*code|^zip", FieldType.POSTAL_CODE),
    PatternRule(100, r"school|university", FieldType.SCHOOL),
    PatternRule(110, r"field\s*of\s*study", FieldType.FIELD_OF_STUDY),
    PatternRule(120, r"^degree", FieldType.DEGREE),
    PatternRule(130, r"^gender", FieldType.GENDER),
    PatternRule(140, r"hispanic|latino", FieldType.HISPANIC_LATINO),
    PatternRule(150, r"^race|^ethnicity", FieldType.RACE_ETHNICITY),
    PatternRule(160, r"veteran", FieldType.VETERAN_STATUS),
    PatternRule(170, r"disability", FieldType.DISABILITY_STATUS),
    PatternRule(180, r"how\s*did\s*you\s*hear", FieldType.REFERRAL_SOURCE),
])


@dataclass(frozen=True)
class OptionSignature:
    field_type: FieldType
    keywords: tuple
    min_matches: int


# Checked in order; first signature reaching its minimum wins
OPTION_SIGNATURES: List[OptionSignature] = [
    OptionSignature(FieldType.GENDER, ("male", "female", "non-binary", "decline to self-identify"), 2),
    OptionSignature(FieldType.VETERAN_STATUS, ("veteran", "not a veteran", "protected veteran", "i am not a veteran"), 1),
    OptionSignature(FieldType.RACE_ETHNICITY, ("asian", "black", "african american", "white", "pacific islander", "native american"), 2),
    OptionSignature(FieldType.HISPANIC_LATINO, ("hispanic", "latino", "not hispanic"), 1),
    OptionSignature(FieldType.DISABILITY_STATUS, ("disability", "no disability", "have a disability", "do not wish"), 1),
    OptionSignature(FieldType.DEGREE, ("bachelor", "master", "doctorate", "phd", "associate", "high school"), 2),
    OptionSignature(FieldType.STATE, ("alabama", "alaska", "arizona", "california", "colorado", "florida", "georgia", "oregon"), 5),
]

# Evidence list for state vs country conflicts
US_STATE_EVIDENCE = (
    "alabama", "alaska", "arizona", "california", "colorado",
    "florida", "georgia", "new york", "oregon", "texas", "washington",
)
MIN_STATE_EVIDENCE = 3


@dataclass
class Signal:
    """One independent piece of evidence about a field's type."""
    source: SignalSource
    field_type: FieldType
    confidence: float
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "field_type": self.field_type.value,
            "confidence": round(self.confidence, 4),
            "detail": self.detail,
        }


@dataclass
class AggregatedSignals:
    """Proposed type with agreement category and the evidence behind it."""
    field_type: FieldType
    confidence: float
    agreement: Agreement
    signals: List[Signal] = field(default_factory=list)
    winning_sources: List[SignalSource] = field(default_factory=list)

    def includes(self, source: SignalSource) -> bool:
        return source in self.winning_sources

    def strong_signals(self) -> List[Signal]:
        return [s for s in self.signals if s.confidence >= STRONG_SIGNAL_THRESHOLD]

    @property
    def has_strong_agreement(self) -> bool:
        """Two or more signals at >= 0.85, all naming the proposed type."""
        strong = self.strong_signals()
        return len(strong) >= 2 and all(s.field_type == self.field_type for s in strong)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_type": self.field_type.value,
            "confidence": round(self.confidence, 4),
            "agreement": self.agreement.value,
            "sources": [s.value for s in self.winning_sources],
            "signals": [s.to_dict() for s in self.signals],
        }


@dataclass
class ConflictResolution:
    field_type: FieldType
    overridden: bool
    reason: str


_LABEL_NOISE = re.compile(r"\*|required|select\s*one", re.IGNORECASE)


def clean_label(label: str) -> str:
    return _LABEL_NOISE.sub("", label).strip().lower()


class SignalAggregator:
    """Collects and aggregates field-type signals."""

    def __init__(self):
        self.stats: Dict[str, int] = {
            "total_fields": 0,
            "by_field_id": 0,
            "by_options": 0,
            "by_label": 0,
            "by_local_ai": 0,
            "full_agreement": 0,
            "conflicts": 0,
            "evidence_overrides": 0,
        }

    # ------------------------------------------------------------------
    # Individual signals
    # ------------------------------------------------------------------

    def signal_from_id(self, form_field: FormField) -> Optional[Signal]:
        for identifier in (form_field.id, form_field.name):
            if not identifier:
                continue
            rule = FIELD_ID_RULES.match(identifier)
            if rule:
                return Signal(SignalSource.FIELD_ID, rule.field_type,
                              SIGNAL_WEIGHTS[SignalSource.FIELD_ID], rule.pattern)

            suffix = identifier.rsplit("--", 1)[-1].lower() if "--" in identifier else ""
            if suffix in ID_SUFFIX_TYPES:
                return Signal(SignalSource.FIELD_ID, ID_SUFFIX_TYPES[suffix],
                              SIGNAL_WEIGHTS[SignalSource.FIELD_ID], f"id suffix: {suffix}")
        return None

    def signal_from_options(self, form_field: FormField) -> Optional[Signal]:
        if not form_field.options:
            return None

        option_labels = [o.lower().strip() for o in form_field.options]
        # A bare Yes/No pair says nothing about what is being asked
        if sorted(option_labels) == ["no", "yes"]:
            return None

        options_text = " ".join(option_labels)
        for signature in OPTION_SIGNATURES:
            matched = [k for k in signature.keywords if k in options_text]
            if len(matched) >= signature.min_matches:
                return Signal(SignalSource.OPTIONS, signature.field_type,
                              SIGNAL_WEIGHTS[SignalSource.OPTIONS], ", ".join(matched))
        return None

    def signal_from_label(self, form_field: FormField) -> Optional[Signal]:
        if not form_field.label:
            return None
        rule = LABEL_RULES.match(clean_label(form_field.label))
        if rule is None:
            return None
        return Signal(SignalSource.LABEL, rule.field_type,
                      SIGNAL_WEIGHTS[SignalSource.LABEL], rule.pattern)

    @staticmethod
    def signal_from_classifier(result: Optional[ClassificationResult]) -> Optional[Signal]:
        if result is None or result.is_unknown:
            return None
        weight = AI_STAGE_WEIGHTS.get(result.source)
        if weight is None:
            return None
        return Signal(SignalSource.LOCAL_AI, result.field_type,
                      result.confidence * weight, result.source.value)

    def collect(self, form_field: FormField, ai_result: Optional[ClassificationResult] = None) -> List[Signal]:
        """Gather every available signal for a field."""
        candidates = [
            self.signal_from_id(form_field),
            self.signal_from_options(form_field),
            self.signal_from_label(form_field),
            self.signal_from_classifier(ai_result),
        ]
        return [s for s in candidates if s is not None]

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate(self, signals: List[Signal]) -> AggregatedSignals:
        """
        Combine signals into one proposal.

        Args:
            signals: Signals in collection order (ties go to the earlier group)

        Returns:
            AggregatedSignals; UNKNOWN with agreement "none" when empty
        """
        self.stats["total_fields"] += 1
        if not signals:
            return AggregatedSignals(FieldType.UNKNOWN, 0.0, Agreement.NONE)

        groups: Dict[FieldType, List[Signal]] = {}
        for signal in signals:
            groups.setdefault(signal.field_type, []).append(signal)

        winner_type = None
        winner_total = -1.0
        for field_type, members in groups.items():
            total = sum(s.confidence for s in members)
            if total > winner_total:
                winner_type, winner_total = field_type, total

        winners = groups[winner_type]
        max_confidence = max(s.confidence for s in winners)

        if len(signals) == 1:
            agreement = Agreement.SINGLE
            confidence = signals[0].confidence
        elif len(winners) == len(signals):
            agreement = Agreement.FULL
            confidence = min(MAX_AGGREGATE_CONFIDENCE, max_confidence + AGREEMENT_BONUS * (len(signals) - 1))
            self.stats["full_agreement"] += 1
        elif len(winners) > len(signals) / 2:
            agreement = Agreement.MAJORITY
            confidence = max_confidence
        else:
            agreement = Agreement.CONFLICT
            overall = sum(s.confidence for s in signals)
            confidence = winner_total / overall if overall > 0 else 0.0
            self.stats["conflicts"] += 1
            logger.info(
                "Signal conflict: "
                + "; ".join(
                    f"{t.value}: {'+'.join(s.source.value for s in m)}"
                    for t, m in groups.items()
                )
            )

        winning_sources = [s.source for s in winners]
        self._count_winner(winning_sources)

        return AggregatedSignals(
            field_type=winner_type,
            confidence=confidence,
            agreement=agreement,
            signals=list(signals),
            winning_sources=winning_sources,
        )

    def _count_winner(self, sources: List[SignalSource]):
        for source in (SignalSource.FIELD_ID, SignalSource.OPTIONS, SignalSource.LABEL, SignalSource.LOCAL_AI):
            if source in sources:
                self.stats[f"by_{source.value}"] += 1
                return

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    def resolve_conflict(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        verifier_type: FieldType,
    ) -> ConflictResolution:
        """
        Decide between strongly agreeing signals and a disagreeing verifier.

        Returns:
            The verifier's type unless an evidence rule overrides it
        """
        proposed = aggregated.field_type
        if verifier_type == proposed or not aggregated.has_strong_agreement:
            return ConflictResolution(verifier_type, False, "verifier accepted")

        logger.info(
            f"Conflict on '{form_field.display_name}': verifier says {verifier_type.value}, "
            f"{len(aggregated.strong_signals())} strong signals say {proposed.value}"
        )

        if {proposed, verifier_type} == {FieldType.STATE, FieldType.COUNTRY}:
            label = form_field.label.lower()
            reason = None
            if "state" in label or "province" in label:
                reason = 'label contains "state"'
            else:
                options_text = " ".join(o.lower() for o in form_field.options)
                state_matches = sum(1 for s in US_STATE_EVIDENCE if s in options_text)
                if state_matches >= MIN_STATE_EVIDENCE:
                    reason = f"found {state_matches} US state names in options"

            if reason is not None:
                overridden = verifier_type != FieldType.STATE
                if overridden:
                    self.stats["evidence_overrides"] += 1
                return ConflictResolution(FieldType.STATE, overridden, reason)

        return ConflictResolution(verifier_type, False, "no evidence rule, verifier accepted")

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)

    def reset_stats(self):
        for key in self.stats:
            self.stats[key] = 0
