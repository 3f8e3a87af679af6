"""
Answer Resolver
===============

Maps a resolved FieldType plus the applicant profile to the value to enter.

Contract:
---------
- ``None`` when the profile has no data for the type; the caller skips the
  field instead of filling garbage
- Yes/No-shaped types return the strings "Yes"/"No", never booleans
- Date parts derive month/day/year from the field's own label and id text

Profile Layout:
---------------
Groups ``personal``, ``address``, ``workAuth``, ``employment``,
``education``, ``eeo``, ``additional``, ``referral`` and ``documents``, with
camelCase keys inside each group. The profile is loaded once per run and
never mutated here.

Inference:
----------
Different Yes/No questions read different facts. "Authorized to work" reads
``workAuth.authorizedToWork``; "authorized indefinitely" and "US citizen or
permanent resident" read ``workAuth.isUSCitizenOrPR``.
"""

import json
import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .field_types import FieldType, ONTOLOGY
from .form_field import FormField, readable_identifier

logger = logging.getLogger(__name__)

Profile = Dict[str, Any]
ProfilePath = Tuple[str, str]

# Candidate profile locations per type; the first non-empty value wins
PROFILE_PATHS: Dict[FieldType, Tuple[ProfilePath, ...]] = {
    # Personal
    FieldType.FIRST_NAME: (("personal", "firstName"),),
    FieldType.LAST_NAME: (("personal", "lastName"),),
    FieldType.MIDDLE_NAME: (("personal", "middleName"),),
    FieldType.PREFERRED_NAME: (("personal", "preferredName"),),
    FieldType.PREFIX: (("personal", "prefix"),),
    FieldType.SUFFIX: (("personal", "suffix"),),
    FieldType.EMAIL: (("personal", "email"),),
    FieldType.COUNTRY_PHONE_CODE: (("personal", "countryPhoneCode"),),
    FieldType.PHONE_EXTENSION: (("personal", "phoneExtension"),),
    FieldType.PHONE_TYPE: (("personal", "phoneType"),),

    # Address
    FieldType.ADDRESS_LINE_1: (("address", "line1"),),
    FieldType.ADDRESS_LINE_2: (("address", "line2"),),
    FieldType.CITY: (("address", "city"),),
    FieldType.STATE: (("address", "state"),),
    FieldType.COUNTY: (("address", "county"),),
    FieldType.POSTAL_CODE: (("address", "zipCode"),),
    FieldType.COUNTRY: (("address", "country"),),

    # Work authorization
    FieldType.WORK_AUTHORIZATION: (("workAuth", "authorizedToWork"),),
    FieldType.WORK_AUTHORIZATION_INDEFINITE: (("workAuth", "isUSCitizenOrPR"),),
    FieldType.VISA_SPONSORSHIP: (("workAuth", "requiresSponsorship"),),
    FieldType.CITIZENSHIP_STATUS: (("workAuth", "isUSCitizenOrPR"),),
    FieldType.CITIZENSHIP_COUNTRY_TEXT: (("personal", "citizenship"),),
    FieldType.RESTRICTED_COUNTRY_CITIZEN: (("additional", "isRestrictedCountryCitizen"),),
    FieldType.GROUP_D_COUNTRY_CITIZEN: (("additional", "isRestrictedCountryCitizen"),),
    FieldType.FOREIGN_PERMANENT_RESIDENT: (("workAuth", "foreignPermanentResident"),),
    FieldType.CURRENT_VISA_STATUS: (("workAuth", "visaStatus"),),
    FieldType.J1_J2_VISA_HISTORY: (("workAuth", "hadJ1J2Visa"),),
    FieldType.SPONSORSHIP_DETAILS: (("workAuth", "sponsorshipDetails"),),

    # Employment
    FieldType.PREVIOUSLY_EMPLOYED: (("additional", "previouslyEmployed"),),
    FieldType.CURRENT_EMPLOYEE: (("additional", "currentEmployee"),),
    FieldType.DESIRED_SALARY: (("employment", "desiredSalary"),),
    FieldType.AVAILABLE_START_DATE: (("employment", "availableStartDate"),),
    FieldType.YEARS_OF_EXPERIENCE: (("employment", "yearsOfExperience"),),
    FieldType.NOTICE_PERIOD: (("employment", "noticePeriod"),),
    FieldType.RELATIVE_AT_COMPANY: (("additional", "hasRelativeAtCompany"),),
    FieldType.OTHER_COMMITMENTS: (("additional", "hasOtherCommitments"),),
    FieldType.RESTRICTIVE_AGREEMENT: (("additional", "hasRestrictiveAgreement"),),

    # Education
    FieldType.SCHOOL: (("education", "school"),),
    FieldType.DEGREE: (("education", "degree"),),
    FieldType.FIELD_OF_STUDY: (("education", "fieldOfStudy"),),
    FieldType.GRADUATION_YEAR: (("education", "graduationYear"),),
    FieldType.GPA: (("education", "gpa"),),
    FieldType.MEETS_EDUCATIONAL_REQUIREMENTS: (("additional", "meetsEducationalRequirements"),),
    FieldType.MEETS_JOB_REQUIREMENTS: (("additional", "meetsJobRequirements"),),

    # Compliance
    FieldType.HEALTHCARE_EXCLUSION: (("additional", "healthcareExclusion"),),
    FieldType.DISCIPLINARY_ACTION: (("additional", "disciplinaryAction"),),
    FieldType.MILITARY_SERVICE: (("additional", "militaryService"),),

    # Documents
    FieldType.RESUME_UPLOAD: (("documents", "resumePath"),),
    FieldType.COVER_LETTER_UPLOAD: (("documents", "coverLetterPath"),),
    FieldType.LINKEDIN: (("personal", "linkedIn"), ("documents", "linkedin")),
    FieldType.WEBSITE: (("personal", "website"), ("documents", "website")),
    FieldType.PORTFOLIO: (("documents", "portfolio"),),

    # EEO
    FieldType.GENDER: (("eeo", "gender"),),
    FieldType.RACE_ETHNICITY: (("eeo", "race"),),
    FieldType.HISPANIC_LATINO: (("eeo", "hispanicLatino"),),
    FieldType.VETERAN_STATUS: (("eeo", "veteranStatus"),),
    FieldType.DISABILITY_STATUS: (("eeo", "disabilityStatus"),),

    # Consent
    FieldType.TERMS_AGREEMENT: (("additional", "agreeToTerms"),),
    FieldType.AI_RECRUITMENT_CONSENT: (("additional", "aiRecruitmentConsent"),),
    FieldType.FUTURE_OPPORTUNITIES_CONSENT: (("additional", "futureOpportunitiesConsent"),),
    FieldType.AGE_VERIFICATION: (("additional", "over18"),),
    FieldType.MINOR_WORK_PERMIT: (("additional", "hasMinorWorkPermit"),),

    # Other
    FieldType.REFERRAL_SOURCE: (("referral", "source"),),
    FieldType.EMPLOYEE_ID: (("additional", "employeeId"),),
}

# Never auto-filled
UNRESOLVABLE_TYPES = {FieldType.SKILLS, FieldType.EXPLANATION_TEXT, FieldType.UNKNOWN}

_DATE_TYPES = {FieldType.SIGNATURE_DATE, FieldType.DATE_MONTH, FieldType.DATE_DAY, FieldType.DATE_YEAR}


def _lookup(profile: Profile, path: ProfilePath) -> Any:
    group = profile.get(path[0])
    if not isinstance(group, dict):
        return None
    return group.get(path[1])


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_text(value: Any) -> Optional[str]:
    if _is_empty(value):
        return None
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value).strip()


def _yes_no(value: Any) -> Optional[str]:
    """Booleans become "Yes"/"No"; strings pass through stripped."""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if _is_empty(value):
        return None
    return str(value).strip()


def _date_part(form_field: FormField, field_type: FieldType, today: date) -> str:
    """Pick month/day/year from the field's own label and id text."""
    if field_type == FieldType.DATE_MONTH:
        return str(today.month)
    if field_type == FieldType.DATE_DAY:
        return str(today.day)
    if field_type == FieldType.DATE_YEAR:
        return str(today.year)

    words = set(re.findall(r"[a-z]+", form_field.label.lower()))
    words.update(readable_identifier(form_field.identifier).split())
    if words & {"month", "mm"}:
        return str(today.month)
    if words & {"day", "dd"}:
        return str(today.day)
    if words & {"year", "yyyy"}:
        return str(today.year)
    return f"{today.month}/{today.day}/{today.year}"


def resolve_answer(
    field_type: FieldType,
    form_field: FormField,
    profile: Profile,
    today: Optional[date] = None,
) -> Optional[str]:
    """
    Resolve the value to enter for a classified field.

    Args:
        field_type: Resolved type
        form_field: The field (used for date-part detection)
        profile: Applicant profile
        today: Date used for signature dates (defaults to today)

    Returns:
        The display string, or None when nothing should be entered
    """
    if field_type in UNRESOLVABLE_TYPES:
        return None

    if field_type in _DATE_TYPES:
        return _date_part(form_field, field_type, today or date.today())

    if field_type == FieldType.FULL_NAME:
        parts = [_to_text(_lookup(profile, ("personal", key))) for key in ("firstName", "lastName")]
        full_name = " ".join(p for p in parts if p)
        return full_name or None

    if field_type == FieldType.PHONE_NUMBER:
        digits = re.sub(r"\D", "", str(_lookup(profile, ("personal", "phone")) or ""))
        return digits or None

    render = _yes_no if ONTOLOGY.is_yes_no(field_type) else _to_text
    for path in PROFILE_PATHS.get(field_type, ()):
        value = render(_lookup(profile, path))
        if value is not None:
            return value
    return None


class AnswerResolver:
    """Profile-bound resolver with an injectable clock."""

    def __init__(self, profile: Optional[Profile] = None, today: Optional[Callable[[], date]] = None):
        self.profile: Profile = profile or {}
        self._today = today or date.today

    def resolve(self, field_type: FieldType, form_field: FormField) -> Optional[str]:
        return resolve_answer(field_type, form_field, self.profile, today=self._today())

    def summary(self) -> str:
        return build_profile_summary(self.profile)


def load_profile(path: Union[str, Path]) -> Profile:
    """
    Load the applicant profile JSON.

    A missing or unreadable file yields an empty profile (every answer
    resolves to None) and a warning.
    """
    profile_path = Path(path)
    if not profile_path.exists():
        logger.warning(f"Profile not found at {profile_path}; answers will be skipped")
        return {}
    try:
        with open(profile_path, "r", encoding="utf-8") as f:
            profile = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load profile from {profile_path}: {e}")
        return {}
    if not isinstance(profile, dict):
        logger.warning(f"Profile at {profile_path} is not a JSON object")
        return {}
    return profile


def _line(label: str, value: Any) -> Optional[str]:
    text = _to_text(value)
    return f"{label}: {text}" if text is not None else None


def build_profile_summary(profile: Optional[Profile]) -> str:
    """
    Render the profile facts the verifier needs to infer answers.

    Only fields relevant to classification and Yes/No inference are
    included; document paths and contact details beyond name/email/phone
    are left out.
    """
    if not profile:
        return "(no profile available)"

    lines: List[Optional[str]] = []
    personal = profile.get("personal") or {}
    address = profile.get("address") or {}
    work_auth = profile.get("workAuth") or {}
    education = profile.get("education") or {}
    eeo = profile.get("eeo") or {}
    additional = profile.get("additional") or {}
    referral = profile.get("referral") or {}

    if personal:
        name = " ".join(p for p in (personal.get("firstName"), personal.get("lastName")) if p)
        lines.append(_line("Name", name))
        lines.append(_line("Email", personal.get("email")))
        lines.append(_line("Phone", personal.get("phone")))
        lines.append(_line("Citizenship", personal.get("citizenship")))

    if address:
        location = ", ".join(
            str(address[k]) for k in ("line1", "city", "state", "zipCode") if address.get(k)
        )
        lines.append(_line("Address", location))
        lines.append(_line("Country of Residence", address.get("country")))

    if work_auth:
        lines.append("--- WORK AUTHORIZATION ---")
        lines.append(_line("Authorized to Work", work_auth.get("authorizedToWork")))
        lines.append(_line("Requires Sponsorship", work_auth.get("requiresSponsorship")))
        lines.append(_line("Visa Status", work_auth.get("visaStatus")))
        lines.append(_line("Is US Citizen or PR", work_auth.get("isUSCitizenOrPR")))
        lines.append(_line("Had J-1/J-2 Visa", work_auth.get("hadJ1J2Visa")))

    if education:
        lines.append("--- EDUCATION ---")
        lines.append(_line("School", education.get("school")))
        lines.append(_line("Degree", education.get("degree")))
        lines.append(_line("Field of Study", education.get("fieldOfStudy")))

    if eeo:
        lines.append("--- EEO ---")
        lines.append(_line("Gender", eeo.get("gender")))
        lines.append(_line("Race", eeo.get("race")))
        lines.append(_line("Veteran Status", eeo.get("veteranStatus")))
        lines.append(_line("Disability Status", eeo.get("disabilityStatus")))

    if additional:
        lines.append("--- ADDITIONAL ---")
        lines.append(_line("Over 18", additional.get("over18")))
        lines.append(_line("Previously Employed", additional.get("previouslyEmployed")))
        lines.append(_line("Has Relative at Company", additional.get("hasRelativeAtCompany")))
        lines.append(_line("Has Restrictive Agreement", additional.get("hasRestrictiveAgreement")))
        lines.append(_line("Agree to Terms", additional.get("agreeToTerms")))

    if referral:
        lines.append(_line("Referral Source", referral.get("source")))

    return "\n".join(line for line in lines if line)
