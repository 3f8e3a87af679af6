"""
Form Field Type Ontology
========================

Defines the canonical set of semantic field types for job application forms.
This ontology is CLOSED - every layer (pattern rules, learned store, classifier
stages, verifier, answer resolver) speaks this vocabulary and nothing else.

Design Rationale:
-----------------
A single enum shared by every layer removes the string translation tables
that otherwise grow between the classifier vocabulary ("a person's first
name") and the routing vocabulary ("first_name"). Classifier stages map their
model labels to a FieldType at their own boundary; anything they cannot map
becomes UNKNOWN.

Metadata:
---------
- category: coarse grouping used for reporting
- is_yes_no: answer is rendered as "Yes"/"No"
- description: hypothesis completion for the zero-shot NLI stage
  ("This form field collects {description}")
- reference_phrases: short phrases averaged into the embedding-stage centroid

IMPORTANT: Adding a type means adding the enum member here. Rules, prompts and
the answer resolver all validate against this enum.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set


class FieldType(str, Enum):
    """
    Canonical semantic field types.

    Categories:
    - Personal / contact: FIRST_NAME, EMAIL, PHONE_NUMBER, ...
    - Address: ADDRESS_LINE_1, CITY, STATE, ...
    - Work authorization: WORK_AUTHORIZATION, VISA_SPONSORSHIP, ...
    - Employment, education, compliance, documents, EEO, consent
    - Dates: SIGNATURE_DATE and its split parts
    - Unknown: UNKNOWN (fallback)
    """

    # === PERSONAL ===
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    MIDDLE_NAME = "middle_name"
    FULL_NAME = "full_name"
    PREFERRED_NAME = "preferred_name"
    PREFIX = "prefix"
    SUFFIX = "suffix"
    EMAIL = "email"
    PHONE_NUMBER = "phone_number"
    COUNTRY_PHONE_CODE = "country_phone_code"
    PHONE_EXTENSION = "phone_extension"
    PHONE_TYPE = "phone_type"

    # === ADDRESS ===
    ADDRESS_LINE_1 = "address_line_1"
    ADDRESS_LINE_2 = "address_line_2"
    CITY = "city"
    STATE = "state"
    COUNTY = "county"
    POSTAL_CODE = "postal_code"
    COUNTRY = "country"

    # === WORK AUTHORIZATION ===
    WORK_AUTHORIZATION = "work_authorization"
    WORK_AUTHORIZATION_INDEFINITE = "work_authorization_indefinite"
    VISA_SPONSORSHIP = "visa_sponsorship"
    CITIZENSHIP_STATUS = "citizenship_status"
    CITIZENSHIP_COUNTRY_TEXT = "citizenship_country_text"
    RESTRICTED_COUNTRY_CITIZEN = "restricted_country_citizen"
    GROUP_D_COUNTRY_CITIZEN = "group_d_country_citizen"
    FOREIGN_PERMANENT_RESIDENT = "foreign_permanent_resident"
    CURRENT_VISA_STATUS = "current_visa_status"
    J1_J2_VISA_HISTORY = "j1_j2_visa_history"
    SPONSORSHIP_DETAILS = "sponsorship_details"

    # === EMPLOYMENT ===
    PREVIOUSLY_EMPLOYED = "previously_employed"
    CURRENT_EMPLOYEE = "current_employee"
    DESIRED_SALARY = "desired_salary"
    AVAILABLE_START_DATE = "available_start_date"
    YEARS_OF_EXPERIENCE = "years_of_experience"
    NOTICE_PERIOD = "notice_period"
    RELATIVE_AT_COMPANY = "relative_at_company"
    OTHER_COMMITMENTS = "other_commitments"
    RESTRICTIVE_AGREEMENT = "restrictive_agreement"

    # === EDUCATION / QUALIFICATIONS ===
    SCHOOL = "school"
    DEGREE = "degree"
    FIELD_OF_STUDY = "field_of_study"
    GRADUATION_YEAR = "graduation_year"
    GPA = "gpa"
    MEETS_EDUCATIONAL_REQUIREMENTS = "meets_educational_requirements"
    MEETS_JOB_REQUIREMENTS = "meets_job_requirements"

    # === COMPLIANCE / BACKGROUND ===
    HEALTHCARE_EXCLUSION = "healthcare_exclusion"
    DISCIPLINARY_ACTION = "disciplinary_action"
    MILITARY_SERVICE = "military_service"

    # === DOCUMENTS / LINKS ===
    RESUME_UPLOAD = "resume_upload"
    COVER_LETTER_UPLOAD = "cover_letter_upload"
    LINKEDIN = "linkedin"
    WEBSITE = "website"
    PORTFOLIO = "portfolio"

    # === EEO ===
    GENDER = "gender"
    RACE_ETHNICITY = "race_ethnicity"
    HISPANIC_LATINO = "hispanic_latino"
    VETERAN_STATUS = "veteran_status"
    DISABILITY_STATUS = "disability_status"

    # === CONSENT ===
    TERMS_AGREEMENT = "terms_agreement"
    AI_RECRUITMENT_CONSENT = "ai_recruitment_consent"
    FUTURE_OPPORTUNITIES_CONSENT = "future_opportunities_consent"
    AGE_VERIFICATION = "age_verification"
    MINOR_WORK_PERMIT = "minor_work_permit"

    # === DATES ===
    SIGNATURE_DATE = "signature_date"
    DATE_MONTH = "date_month"
    DATE_DAY = "date_day"
    DATE_YEAR = "date_year"

    # === OTHER ===
    REFERRAL_SOURCE = "referral_source"
    EMPLOYEE_ID = "employee_id"
    SKILLS = "skills"
    EXPLANATION_TEXT = "explanation_text"

    # === FALLBACK ===
    UNKNOWN = "unknown"


@dataclass
class FieldTypeMetadata:
    """Metadata for a field type including classification hints."""
    field_type: FieldType
    category: str
    is_yes_no: bool = False
    description: Optional[str] = None  # Zero-shot hypothesis completion
    reference_phrases: List[str] = field(default_factory=list)  # Embedding centroid


# Labels too generic to identify a field on their own
GENERIC_LABELS: Set[str] = {
    "select one", "select", "choose one", "choose", "yes", "no",
    "please select", "select option", "",
}


class FieldTypeOntology:
    """
    Manages the field type ontology with lookup utilities.

    Thread-safe: all data is immutable after initialization.
    """

    # Types with rich classification hints. Only these are offered to the
    # classifier stages as candidates.
    _TYPE_METADATA: Dict[FieldType, FieldTypeMetadata] = {
        FieldType.FIRST_NAME: FieldTypeMetadata(
            field_type=FieldType.FIRST_NAME,
            category="personal",
            description="a person's first name",
            reference_phrases=["first name of a person", "given name", "first name field", "your first name"],
        ),
        FieldType.MIDDLE_NAME: FieldTypeMetadata(
            field_type=FieldType.MIDDLE_NAME,
            category="personal",
            description="a person's middle name",
            reference_phrases=["middle name of a person", "middle initial", "middle name field"],
        ),
        FieldType.LAST_NAME: FieldTypeMetadata(
            field_type=FieldType.LAST_NAME,
            category="personal",
            description="a person's last name or surname",
            reference_phrases=["last name of a person", "surname", "family name", "last name field"],
        ),
        FieldType.FULL_NAME: FieldTypeMetadata(
            field_type=FieldType.FULL_NAME,
            category="personal",
            description="a signature or legal name",
        ),
        FieldType.EMAIL: FieldTypeMetadata(
            field_type=FieldType.EMAIL,
            category="personal",
            description="an email address",
            reference_phrases=["email address", "e-mail", "electronic mail address"],
        ),
        FieldType.PHONE_NUMBER: FieldTypeMetadata(
            field_type=FieldType.PHONE_NUMBER,
            category="personal",
            description="a phone number",
            reference_phrases=["phone number", "telephone number", "contact number", "mobile number"],
        ),
        FieldType.PHONE_EXTENSION: FieldTypeMetadata(
            field_type=FieldType.PHONE_EXTENSION,
            category="personal",
            description="a phone extension",
            reference_phrases=["phone extension", "extension number", "ext"],
        ),
        FieldType.COUNTRY_PHONE_CODE: FieldTypeMetadata(
            field_type=FieldType.COUNTRY_PHONE_CODE,
            category="personal",
            description="a country phone code like +1",
            reference_phrases=["country phone code", "country calling code", "international dialing code", "phone country code"],
        ),
        FieldType.PHONE_TYPE: FieldTypeMetadata(
            field_type=FieldType.PHONE_TYPE,
            category="personal",
            description="the type of phone device like mobile or home",
        ),
        FieldType.ADDRESS_LINE_1: FieldTypeMetadata(
            field_type=FieldType.ADDRESS_LINE_1,
            category="address",
            description="address line 1 or street address",
            reference_phrases=["address line 1", "street address", "mailing address", "home address", "address line one", "primary address"],
        ),
        FieldType.ADDRESS_LINE_2: FieldTypeMetadata(
            field_type=FieldType.ADDRESS_LINE_2,
            category="address",
            description="address line 2 or apartment number",
            reference_phrases=["address line 2", "apartment number", "suite number", "unit number", "address line two"],
        ),
        FieldType.CITY: FieldTypeMetadata(
            field_type=FieldType.CITY,
            category="address",
            description="the name of a city or town",
            reference_phrases=["city name", "city or town", "municipality", "city field"],
        ),
        FieldType.STATE: FieldTypeMetadata(
            field_type=FieldType.STATE,
            category="address",
            description="a state or province or region",
            reference_phrases=["state or province", "state name", "region", "state field"],
        ),
        FieldType.POSTAL_CODE: FieldTypeMetadata(
            field_type=FieldType.POSTAL_CODE,
            category="address",
            description="a postal code or zip code",
            reference_phrases=["postal code", "zip code", "postcode", "ZIP"],
        ),
        FieldType.COUNTRY: FieldTypeMetadata(
            field_type=FieldType.COUNTRY,
            category="address",
            description="a country name",
            reference_phrases=["country name", "country of residence", "nation"],
        ),
        FieldType.LINKEDIN: FieldTypeMetadata(
            field_type=FieldType.LINKEDIN,
            category="documents",
            description="a LinkedIn profile URL",
            reference_phrases=["linkedin profile", "linkedin URL", "linkedin address"],
        ),
        FieldType.WORK_AUTHORIZATION: FieldTypeMetadata(
            field_type=FieldType.WORK_AUTHORIZATION,
            category="work_authorization",
            is_yes_no=True,
            description="whether the person is authorized to work in this country",
            reference_phrases=["work authorization", "authorized to work", "legally eligible to work", "work permit status"],
        ),
        FieldType.VISA_SPONSORSHIP: FieldTypeMetadata(
            field_type=FieldType.VISA_SPONSORSHIP,
            category="work_authorization",
            is_yes_no=True,
            description="whether the person requires visa sponsorship",
            reference_phrases=["visa sponsorship", "require sponsorship", "need visa sponsorship", "sponsorship required"],
        ),
        FieldType.CURRENT_VISA_STATUS: FieldTypeMetadata(
            field_type=FieldType.CURRENT_VISA_STATUS,
            category="work_authorization",
            description="the person's current visa or immigration status",
            reference_phrases=["current visa status", "current immigration status", "provide your current status", "what is your visa type"],
        ),
        FieldType.J1_J2_VISA_HISTORY: FieldTypeMetadata(
            field_type=FieldType.J1_J2_VISA_HISTORY,
            category="work_authorization",
            is_yes_no=True,
            description="whether the person has held a J-1 or J-2 exchange visitor visa",
            reference_phrases=["J-1 or J-2 exchange visitor visa", "have you held a J-1 visa", "J-1 J-2 visa history", "exchange visitor visa"],
        ),
        FieldType.CITIZENSHIP_COUNTRY_TEXT: FieldTypeMetadata(
            field_type=FieldType.CITIZENSHIP_COUNTRY_TEXT,
            category="work_authorization",
            description="the person's country of citizenship",
            reference_phrases=["country of citizenship", "countries of citizenship", "citizenship country name", "what country are you a citizen of"],
        ),
        FieldType.PREVIOUSLY_EMPLOYED: FieldTypeMetadata(
            field_type=FieldType.PREVIOUSLY_EMPLOYED,
            category="employment",
            is_yes_no=True,
            description="whether the person previously worked at this company",
            reference_phrases=["previous employee", "previously worked here", "former employee", "worked at this company before"],
        ),
        FieldType.CURRENT_EMPLOYEE: FieldTypeMetadata(
            field_type=FieldType.CURRENT_EMPLOYEE,
            category="employment",
            is_yes_no=True,
            description="whether the person is a current employee of this company",
        ),
        FieldType.REFERRAL_SOURCE: FieldTypeMetadata(
            field_type=FieldType.REFERRAL_SOURCE,
            category="referral",
            description="how the applicant heard about this job",
            reference_phrases=["how did you hear about us", "referral source", "job source", "how did you find this job"],
        ),
        FieldType.SCHOOL: FieldTypeMetadata(
            field_type=FieldType.SCHOOL,
            category="education",
            description="the name of a school or university",
            reference_phrases=["school name", "university name", "college name", "educational institution"],
        ),
        FieldType.DEGREE: FieldTypeMetadata(
            field_type=FieldType.DEGREE,
            category="education",
            description="an academic degree level",
            reference_phrases=["degree level", "education level", "academic degree", "highest degree"],
        ),
        FieldType.FIELD_OF_STUDY: FieldTypeMetadata(
            field_type=FieldType.FIELD_OF_STUDY,
            category="education",
            description="a field of study or major",
            reference_phrases=["field of study", "major", "area of study", "concentration"],
        ),
        FieldType.GENDER: FieldTypeMetadata(
            field_type=FieldType.GENDER,
            category="eeo",
            description="a person's gender such as male or female",
            reference_phrases=["gender", "gender identity", "sex"],
        ),
        FieldType.HISPANIC_LATINO: FieldTypeMetadata(
            field_type=FieldType.HISPANIC_LATINO,
            category="eeo",
            is_yes_no=True,
            description="whether the person is Hispanic or Latino",
        ),
        FieldType.RACE_ETHNICITY: FieldTypeMetadata(
            field_type=FieldType.RACE_ETHNICITY,
            category="eeo",
            description="the applicant's race or ethnicity",
            reference_phrases=["ethnicity", "race", "racial background", "ethnic background"],
        ),
        FieldType.VETERAN_STATUS: FieldTypeMetadata(
            field_type=FieldType.VETERAN_STATUS,
            category="eeo",
            description="military or veteran status",
            reference_phrases=["veteran status", "military service", "protected veteran"],
        ),
        FieldType.DISABILITY_STATUS: FieldTypeMetadata(
            field_type=FieldType.DISABILITY_STATUS,
            category="eeo",
            description="disability status or accommodation needs",
            reference_phrases=["disability status", "disability", "disabled"],
        ),
        FieldType.TERMS_AGREEMENT: FieldTypeMetadata(
            field_type=FieldType.TERMS_AGREEMENT,
            category="consent",
            is_yes_no=True,
            description="agreement to terms and conditions",
        ),
        FieldType.SIGNATURE_DATE: FieldTypeMetadata(
            field_type=FieldType.SIGNATURE_DATE,
            category="dates",
            description="a date",
        ),
        FieldType.RESUME_UPLOAD: FieldTypeMetadata(
            field_type=FieldType.RESUME_UPLOAD,
            category="documents",
            description="a resume or CV file upload",
        ),
        FieldType.UNKNOWN: FieldTypeMetadata(
            field_type=FieldType.UNKNOWN,
            category="unknown",
        ),
    }

    # Remaining types get basic metadata: (category, is_yes_no)
    _BASIC_TYPES: Dict[FieldType, tuple] = {
        FieldType.PREFERRED_NAME: ("personal", False),
        FieldType.PREFIX: ("personal", False),
        FieldType.SUFFIX: ("personal", False),
        FieldType.COUNTY: ("address", False),
        FieldType.WORK_AUTHORIZATION_INDEFINITE: ("work_authorization", True),
        FieldType.CITIZENSHIP_STATUS: ("work_authorization", True),
        FieldType.RESTRICTED_COUNTRY_CITIZEN: ("work_authorization", True),
        FieldType.GROUP_D_COUNTRY_CITIZEN: ("work_authorization", True),
        FieldType.FOREIGN_PERMANENT_RESIDENT: ("work_authorization", True),
        FieldType.SPONSORSHIP_DETAILS: ("work_authorization", False),
        FieldType.DESIRED_SALARY: ("employment", False),
        FieldType.AVAILABLE_START_DATE: ("employment", False),
        FieldType.YEARS_OF_EXPERIENCE: ("employment", False),
        FieldType.NOTICE_PERIOD: ("employment", False),
        FieldType.RELATIVE_AT_COMPANY: ("employment", True),
        FieldType.OTHER_COMMITMENTS: ("employment", True),
        FieldType.RESTRICTIVE_AGREEMENT: ("employment", True),
        FieldType.GRADUATION_YEAR: ("education", False),
        FieldType.GPA: ("education", False),
        FieldType.MEETS_EDUCATIONAL_REQUIREMENTS: ("education", True),
        FieldType.MEETS_JOB_REQUIREMENTS: ("education", True),
        FieldType.HEALTHCARE_EXCLUSION: ("compliance", True),
        FieldType.DISCIPLINARY_ACTION: ("compliance", True),
        FieldType.MILITARY_SERVICE: ("compliance", True),
        FieldType.COVER_LETTER_UPLOAD: ("documents", False),
        FieldType.WEBSITE: ("documents", False),
        FieldType.PORTFOLIO: ("documents", False),
        FieldType.AI_RECRUITMENT_CONSENT: ("consent", True),
        FieldType.FUTURE_OPPORTUNITIES_CONSENT: ("consent", True),
        FieldType.AGE_VERIFICATION: ("consent", True),
        FieldType.MINOR_WORK_PERMIT: ("consent", True),
        FieldType.DATE_MONTH: ("dates", False),
        FieldType.DATE_DAY: ("dates", False),
        FieldType.DATE_YEAR: ("dates", False),
        FieldType.EMPLOYEE_ID: ("other", False),
        FieldType.SKILLS: ("other", False),
        FieldType.EXPLANATION_TEXT: ("other", False),
    }

    def __init__(self):
        """Initialize ontology with complete type set."""
        self._metadata: Dict[FieldType, FieldTypeMetadata] = dict(self._TYPE_METADATA)
        for field_type, (category, is_yes_no) in self._BASIC_TYPES.items():
            self._metadata.setdefault(
                field_type,
                FieldTypeMetadata(field_type=field_type, category=category, is_yes_no=is_yes_no),
            )

        missing = [t for t in FieldType if t not in self._metadata]
        if missing:
            raise ValueError(f"Field types without metadata: {[t.value for t in missing]}")

        # Reverse lookup for zero-shot descriptions
        self._description_to_type: Dict[str, FieldType] = {
            meta.description: field_type
            for field_type, meta in self._metadata.items()
            if meta.description
        }

    @property
    def all_types(self) -> List[FieldType]:
        """Return all valid field types."""
        return list(FieldType)

    @property
    def type_names(self) -> List[str]:
        """Return all type names as strings."""
        return [t.value for t in FieldType]

    @property
    def yes_no_types(self) -> Set[FieldType]:
        """Return types whose answers are rendered as Yes/No."""
        return {t for t, meta in self._metadata.items() if meta.is_yes_no}

    @property
    def zero_shot_labels(self) -> List[str]:
        """Candidate label descriptions for the zero-shot stage."""
        return list(self._description_to_type.keys())

    @property
    def reference_corpus(self) -> Dict[FieldType, List[str]]:
        """Reference phrases per type for the embedding stage."""
        return {
            t: list(meta.reference_phrases)
            for t, meta in self._metadata.items()
            if meta.reference_phrases
        }

    def get_metadata(self, field_type: FieldType) -> FieldTypeMetadata:
        """Get metadata for a type."""
        return self._metadata[field_type]

    def from_description(self, description: str) -> FieldType:
        """Map a zero-shot candidate description back to its type."""
        return self._description_to_type.get(description, FieldType.UNKNOWN)

    def is_valid(self, value: str) -> bool:
        """Check if a string is a valid type in the ontology."""
        try:
            FieldType(value)
            return True
        except ValueError:
            return False

    def parse(self, value: Optional[str]) -> FieldType:
        """
        Parse a type name, tolerating case and surrounding whitespace.

        Returns:
            The matching FieldType or UNKNOWN
        """
        if not value:
            return FieldType.UNKNOWN
        try:
            return FieldType(str(value).strip().lower())
        except ValueError:
            return FieldType.UNKNOWN

    def is_yes_no(self, field_type: FieldType) -> bool:
        return self._metadata[field_type].is_yes_no

    @staticmethod
    def is_generic_label(label: Optional[str]) -> bool:
        """True for labels like "Select One" that identify nothing."""
        normalized = re.sub(r"[*:\s]+", " ", (label or "").lower()).strip()
        return normalized in GENERIC_LABELS


# Global singleton instance
ONTOLOGY = FieldTypeOntology()
