"""
Pattern Library
===============

Static, versioned regular-expression rules that map a field's visible label,
its structural id/name, or its surrounding question text to a FieldType.

Three independent rule sets:
----------------------------
1. GLOBAL: regex over the label only. Anchored (^...$) patterns for common
   fields so "First Name" never matches "Emergency Contact First Name";
   unanchored substring patterns for free-text cues ("linkedin").
2. PLATFORM: regex over id/name, keyed by the detected platform. Workday ids
   are semantic ("legalName--firstName") and stable across companies.
3. QUESTION: regex over label + section + placeholder, for questionnaire
   fields that have no stable id.

Ordering:
---------
Every rule carries an explicit integer priority; a RuleSet evaluates rules in
ascending priority and the first match wins. Where one pattern is a substring
of another ("phone extension" vs "phone number"), the more specific rule MUST
carry the lower priority. Priorities are unique within a rule set so the
order is a reviewable artifact rather than an accident of list position.

Tradeoffs:
----------
Rules are curated, not collision-tested at runtime: a label matching two
global rules silently takes the first. Tests pin the orderings that matter.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .field_types import FieldType
from .form_field import ClassificationResult, FormField, ResultSource
from .platform_detection import Platform

logger = logging.getLogger(__name__)

PATTERN_LIBRARY_VERSION = "3.1.0"


@dataclass(frozen=True)
class PatternRule:
    """A single ordered regex rule."""
    priority: int
    pattern: str
    field_type: FieldType
    description: str = ""


class RuleSet:
    """Priority-ordered collection of compiled rules."""

    def __init__(self, name: str, rules: Iterable[PatternRule]):
        self.name = name
        self.rules: List[PatternRule] = sorted(rules, key=lambda r: r.priority)

        priorities = [r.priority for r in self.rules]
        duplicates = sorted({p for p in priorities if priorities.count(p) > 1})
        if duplicates:
            raise ValueError(f"Rule set '{name}' has duplicate priorities: {duplicates}")

        # Compile regex patterns once
        self._compiled = [(rule, re.compile(rule.pattern, re.IGNORECASE)) for rule in self.rules]

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, text: str) -> Optional[PatternRule]:
        """Return the first rule (by priority) whose pattern matches text."""
        if not text:
            return None
        for rule, compiled in self._compiled:
            if compiled.search(text):
                return rule
        return None


# ============================================================================
# GLOBAL LABEL RULES (platform-agnostic)
# ============================================================================
GLOBAL_RULES = RuleSet("global", [
    # Personal - exact matches
    PatternRule(10, r"^first\s*name\*?$", FieldType.FIRST_NAME),
    PatternRule(20, r"^last\s*name\*?$", FieldType.LAST_NAME),
    PatternRule(30, r"^middle\s*name\*?$", FieldType.MIDDLE_NAME),
    PatternRule(40, r"^name\*?$", FieldType.FULL_NAME),
    PatternRule(50, r"^email\s*(address)?\*?$", FieldType.EMAIL),

    # Address
    PatternRule(100, r"^address\s*line\s*1\*?$", FieldType.ADDRESS_LINE_1),
    PatternRule(110, r"^street\s*address\*?$", FieldType.ADDRESS_LINE_1),
    PatternRule(120, r"^address\s*line\s*2", FieldType.ADDRESS_LINE_2),
    PatternRule(130, r"^city\*?$", FieldType.CITY),
    PatternRule(140, r"^state(\s|\*?$)", FieldType.STATE),
    PatternRule(150, r"^postal\s*code\*?$", FieldType.POSTAL_CODE),
    PatternRule(160, r"^zip\s*code", FieldType.POSTAL_CODE),

    # Phone - extension BEFORE phone number
    PatternRule(200, r"phone\s*extension", FieldType.PHONE_EXTENSION, "more specific than phone number"),
    PatternRule(210, r"^phone\s*number\*?$", FieldType.PHONE_NUMBER),
    PatternRule(220, r"^country\s*phone\s*code", FieldType.COUNTRY_PHONE_CODE),

    # Education
    PatternRule(300, r"^school\s*(or\s*university)?\*?$", FieldType.SCHOOL),
    PatternRule(310, r"^field\s*of\s*study\*?$", FieldType.FIELD_OF_STUDY),
    PatternRule(320, r"^degree(\s|\*?$)", FieldType.DEGREE),

    # Documents
    PatternRule(400, r"resume.*upload|upload.*resume", FieldType.RESUME_UPLOAD),
    PatternRule(410, r"^resume/cv", FieldType.RESUME_UPLOAD),
    PatternRule(420, r"cover\s*letter", FieldType.COVER_LETTER_UPLOAD),
    PatternRule(430, r"linkedin", FieldType.LINKEDIN),

    # EEO
    PatternRule(500, r"^gender(\s|\*?$)", FieldType.GENDER),
    PatternRule(510, r"^hispanic\s*(or|/)\s*latino\*?$", FieldType.HISPANIC_LATINO),
    PatternRule(520, r"^race.*ethnicity\*?$", FieldType.RACE_ETHNICITY),
    PatternRule(530, r"^veteran", FieldType.VETERAN_STATUS),

    # Referral
    PatternRule(600, r"how\s*did\s*you\s*hear", FieldType.REFERRAL_SOURCE),

    # Agreements
    PatternRule(700, r"accept.*terms|terms.*conditions", FieldType.TERMS_AGREEMENT),
])


# ============================================================================
# PLATFORM FIELD-ID RULES
# ============================================================================
WORKDAY_RULES = RuleSet("workday", [
    # Phone - extension BEFORE phoneNumber
    PatternRule(10, r"--extension$", FieldType.PHONE_EXTENSION, "more specific than phone number"),
    PatternRule(20, r"phoneNumber--phoneNumber", FieldType.PHONE_NUMBER),
    PatternRule(30, r"countryPhoneCode", FieldType.COUNTRY_PHONE_CODE),
    PatternRule(40, r"phoneType", FieldType.PHONE_TYPE),

    # Workday's countryRegion is the STATE, not the country
    PatternRule(100, r"countryRegion", FieldType.STATE),

    # Name
    PatternRule(200, r"legalName--firstName", FieldType.FIRST_NAME),
    PatternRule(210, r"legalName--lastName", FieldType.LAST_NAME),
    PatternRule(220, r"legalName--middleName", FieldType.MIDDLE_NAME),

    # Address
    PatternRule(300, r"address--addressLine1", FieldType.ADDRESS_LINE_1),
    PatternRule(310, r"address--addressLine2", FieldType.ADDRESS_LINE_2),
    PatternRule(320, r"address--city", FieldType.CITY),
    PatternRule(330, r"address--postalCode", FieldType.POSTAL_CODE),

    # Employment
    PatternRule(400, r"candidateIsPreviousWorker", FieldType.PREVIOUSLY_EMPLOYED),

    # Education - fieldOfStudy BEFORE school
    PatternRule(500, r"--fieldOfStudy$", FieldType.FIELD_OF_STUDY),
    PatternRule(510, r"--school$", FieldType.SCHOOL),
    PatternRule(520, r"--degree$", FieldType.DEGREE),

    # EEO
    PatternRule(600, r"hispanicOrLatino", FieldType.HISPANIC_LATINO),
    PatternRule(610, r"--gender$", FieldType.GENDER),
    PatternRule(620, r"veteranStatus", FieldType.VETERAN_STATUS),
    PatternRule(630, r"ethnicityMulti", FieldType.RACE_ETHNICITY),
    PatternRule(640, r"--ethnicity$", FieldType.RACE_ETHNICITY),

    # Disability self-identification form
    PatternRule(700, r"selfIdentifiedDisabilityData--name$", FieldType.FULL_NAME),
    PatternRule(710, r"selfIdentifiedDisabilityData--employeeId", FieldType.EMPLOYEE_ID),
    PatternRule(720, r"selfIdentifiedDisabilityData--disabilityStatus", FieldType.DISABILITY_STATUS),
    PatternRule(730, r"dateSectionMonth", FieldType.DATE_MONTH, "split date parts before the whole date"),
    PatternRule(740, r"dateSectionDay", FieldType.DATE_DAY),
    PatternRule(750, r"dateSectionYear", FieldType.DATE_YEAR),
    PatternRule(760, r"dateSignedOn", FieldType.SIGNATURE_DATE),

    # Agreements
    PatternRule(800, r"acceptTermsAndAgreements", FieldType.TERMS_AGREEMENT),

    # Source / referral
    PatternRule(900, r"^source--source", FieldType.REFERRAL_SOURCE),

    # Skills
    PatternRule(1000, r"skills", FieldType.SKILLS),
])

TALEO_RULES = RuleSet("taleo", [
    PatternRule(10, r"firstName", FieldType.FIRST_NAME),
    PatternRule(20, r"lastName", FieldType.LAST_NAME),
])

ICIMS_RULES = RuleSet("icims", [
    PatternRule(10, r"firstName", FieldType.FIRST_NAME),
    PatternRule(20, r"lastName", FieldType.LAST_NAME),
])

PLATFORM_RULES: Dict[Platform, RuleSet] = {
    Platform.WORKDAY: WORKDAY_RULES,
    Platform.TALEO: TALEO_RULES,
    Platform.ICIMS: ICIMS_RULES,
}

_EMPTY_RULES = RuleSet("empty", [])


# ============================================================================
# QUESTION TEXT RULES
# ============================================================================
QUESTION_RULES = RuleSet("question", [
    # Work authorization - indefinite BEFORE plain authorization
    PatternRule(10, r"authorized.*work.*indefinite", FieldType.WORK_AUTHORIZATION_INDEFINITE),
    PatternRule(20, r"indefinite\s*basis", FieldType.WORK_AUTHORIZATION_INDEFINITE),
    PatternRule(30, r"will\s*you.*need.*sponsor", FieldType.VISA_SPONSORSHIP),
    PatternRule(40, r"need.*sponsor", FieldType.VISA_SPONSORSHIP),
    PatternRule(50, r"require.*sponsor", FieldType.VISA_SPONSORSHIP),
    PatternRule(60, r"sponsored\s*for.*work\s*visa", FieldType.VISA_SPONSORSHIP),
    PatternRule(70, r"authorized\s*to\s*work.*united\s*states", FieldType.WORK_AUTHORIZATION),
    PatternRule(80, r"legally.*authorized.*work", FieldType.WORK_AUTHORIZATION),

    # Citizenship
    PatternRule(100, r"are you.*u\.?s\.?\s*citizen", FieldType.CITIZENSHIP_STATUS),
    PatternRule(110, r"citizen.*permanent\s*resident.*protected", FieldType.CITIZENSHIP_STATUS),
    PatternRule(120, r"u\.?s\.?\s*citizen.*permanent\s*resident", FieldType.CITIZENSHIP_STATUS),
    PatternRule(130, r"permanent\s*resident.*another\s*country", FieldType.FOREIGN_PERMANENT_RESIDENT),

    # Export control
    PatternRule(200, r"citizen.*cuba.*iran.*north\s*korea.*syria", FieldType.RESTRICTED_COUNTRY_CITIZEN),
    PatternRule(210, r"citizen.*group\s*d", FieldType.GROUP_D_COUNTRY_CITIZEN),
    PatternRule(220, r"countries.*cuba.*iran", FieldType.RESTRICTED_COUNTRY_CITIZEN),
    PatternRule(230, r"please\s*add\s*your\s*country\s*of\s*citizenship", FieldType.CITIZENSHIP_COUNTRY_TEXT),

    # Age - minor work permit BEFORE generic age questions
    PatternRule(290, r"work\s*permit.*under\s*18", FieldType.MINOR_WORK_PERMIT),
    PatternRule(300, r"at\s*least\s*18\s*years?\s*old", FieldType.AGE_VERIFICATION),
    PatternRule(310, r"are\s*you\s*18", FieldType.AGE_VERIFICATION),

    # Employment
    PatternRule(400, r"previously.*employed", FieldType.PREVIOUSLY_EMPLOYED),
    PatternRule(410, r"employed.*before", FieldType.PREVIOUSLY_EMPLOYED),
    PatternRule(420, r"have\s*you.*worked\s*for", FieldType.PREVIOUSLY_EMPLOYED),
    PatternRule(430, r"relatives?.*working\s*at", FieldType.RELATIVE_AT_COMPANY),
    PatternRule(440, r"do\s*you.*have\s*relatives", FieldType.RELATIVE_AT_COMPANY),
    PatternRule(450, r"policy.*employment\s*of\s*relatives", FieldType.RELATIVE_AT_COMPANY),
    PatternRule(460, r"commitment.*another.*organization", FieldType.OTHER_COMMITMENTS),
    PatternRule(470, r"commitments.*might.*conflict", FieldType.OTHER_COMMITMENTS),
    PatternRule(480, r"non-?compete", FieldType.RESTRICTIVE_AGREEMENT),
    PatternRule(490, r"restrictive.*agreement", FieldType.RESTRICTIVE_AGREEMENT),
    PatternRule(495, r"bound.*agreement", FieldType.RESTRICTIVE_AGREEMENT),

    # Consent
    PatternRule(500, r"artificial\s*intelligence.*recruit", FieldType.AI_RECRUITMENT_CONSENT),
    PatternRule(510, r"additional.*future.*job", FieldType.FUTURE_OPPORTUNITIES_CONSENT),
    PatternRule(520, r"consider\s*you\s*for\s*additional", FieldType.FUTURE_OPPORTUNITIES_CONSENT),

    # Disability
    PatternRule(600, r"please\s*check\s*one.*boxes.*below", FieldType.DISABILITY_STATUS),
    PatternRule(610, r"voluntary.*self.*identification.*disability", FieldType.DISABILITY_STATUS),
])


class PatternLibrary:
    """
    Query interface over the three rule sets.

    Pure and stateless: the platform is passed per call.
    """

    GLOBAL_CONFIDENCE = 0.95
    PLATFORM_CONFIDENCE = 0.95
    QUESTION_CONFIDENCE = 0.90

    def __init__(
        self,
        global_rules: RuleSet = GLOBAL_RULES,
        platform_rules: Optional[Dict[Platform, RuleSet]] = None,
        question_rules: RuleSet = QUESTION_RULES,
    ):
        self.global_rules = global_rules
        self.platform_rules = platform_rules if platform_rules is not None else PLATFORM_RULES
        self.question_rules = question_rules
        self.version = PATTERN_LIBRARY_VERSION
        logger.info(
            f"Initialized PatternLibrary v{self.version} - "
            f"global: {len(global_rules)}, "
            f"platforms: {sorted(p.value for p in self.platform_rules)}, "
            f"question: {len(question_rules)}"
        )

    def rules_for(self, platform: Platform) -> RuleSet:
        """Platform rule set; empty for platforms without rules."""
        return self.platform_rules.get(platform, _EMPTY_RULES)

    def match_global(self, form_field: FormField) -> Optional[ClassificationResult]:
        """Match the label against the global rules."""
        rule = self.global_rules.match(form_field.label.strip())
        return self._to_result(rule, self.GLOBAL_CONFIDENCE, ResultSource.GLOBAL)

    def match_platform(self, form_field: FormField, platform: Platform) -> Optional[ClassificationResult]:
        """Match id (or name) against the platform's rules."""
        rule = self.rules_for(platform).match(form_field.identifier)
        return self._to_result(rule, self.PLATFORM_CONFIDENCE, ResultSource.PLATFORM)

    def match_question(self, form_field: FormField) -> Optional[ClassificationResult]:
        """Match label + section + placeholder against the question rules."""
        all_text = " ".join([form_field.label, form_field.section, form_field.placeholder]).lower()
        rule = self.question_rules.match(all_text)
        return self._to_result(rule, self.QUESTION_CONFIDENCE, ResultSource.QUESTION)

    @staticmethod
    def _to_result(
        rule: Optional[PatternRule],
        confidence: float,
        source: ResultSource,
    ) -> Optional[ClassificationResult]:
        if rule is None:
            return None
        return ClassificationResult(
            field_type=rule.field_type,
            confidence=confidence,
            source=source,
            details={"priority": rule.priority, "pattern": rule.pattern},
        )
