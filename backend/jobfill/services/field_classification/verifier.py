"""
Remote Field Verifier
=====================

Optional second opinion from a hosted LLM for fields the cache could not
answer. One call verifies BOTH the proposed type and the proposed answer.

Inputs:
-------
- Field info (question text, label, id, options, element kind)
- Every collected signal with its confidence
- A warning when two or more signals agree at >= 85%
- The proposed type and answer
- A sanitized profile summary
- The closed list of valid types

Output Contract:
----------------
The model must answer with JSON::

    {"field_type": "...", "answer": "... or null", "confidence": 0-100, "reasoning": "..."}

``field_type`` is validated against FieldType; anything else becomes
``unknown``. Markdown code fences around the JSON are tolerated.

Availability:
-------------
Without an API key, or once the call budget is spent, ``verify`` returns the
proposed values unchanged with ``source`` naming why. Transport and parse
failures do the same. The caller checks ``called`` to know whether the remote
opinion actually exists.

Audit:
------
Every verification is logged with a hash of its input, so a decision can be
traced back to exactly what the model saw.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from .field_types import FieldType, ONTOLOGY
from .form_field import FormField
from .signal_aggregator import AggregatedSignals
from jobfill.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SOURCE_API = "verifier_api"
SOURCE_NO_API = "no_api"
SOURCE_BUDGET = "budget_exhausted"
SOURCE_API_ERROR = "api_error"
SOURCE_PARSE_ERROR = "parse_error"

YES_NO = ("Yes", "No")


@dataclass
class VerificationResult:
    """Outcome of one verification, with audit metadata."""
    field_type: FieldType
    answer: Optional[str]
    confidence: float
    reasoning: str
    source: str
    input_hash: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    processing_time_ms: int = 0
    tokens_used: int = 0

    @property
    def called(self) -> bool:
        """True when the remote model actually produced this result."""
        return self.source == SOURCE_API

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_type": self.field_type.value,
            "answer": self.answer,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "source": self.source,
            "input_hash": self.input_hash,
            "timestamp": self.timestamp,
            "processing_time_ms": self.processing_time_ms,
            "tokens_used": self.tokens_used,
        }


class FieldVerifier:
    """
    OpenAI-compatible chat-completions verifier.

    Deterministic settings (temperature 0) so repeated verification of the
    same input yields the same decision.
    """

    SERVICE_NAME = "verifier"

    SYSTEM_PROMPT = (
        "You are a precise job application form analyst. You verify form field "
        "classifications and infer answers from an applicant profile. "
        "Respond with JSON only."
    )

    INFERENCE_RULES = """IMPORTANT INFERENCE RULES:
- citizenship="India" + visaStatus="H1B" -> NOT a US Citizen -> answer "No" to "Are you US Citizen/PR?"
- visaStatus="H1B" -> NOT J-1/J-2 -> answer "No" to "Have you held J-1/J-2 visa?"
- authorizedToWork=true -> answer "Yes" to work authorization questions
- requiresSponsorship=true -> answer "Yes" to sponsorship questions
- over18=true -> answer "Yes" to age verification
- hasRelativeAtCompany=false -> answer "No" to relative questions
- hasRestrictiveAgreement=false -> answer "No" to non-compete questions
- For country dropdowns with only Yes/No options: this is asking if they're RESIDENT of another country

WORKDAY NAMING CONVENTIONS:
- "countryRegion" in field ID = STATE/PROVINCE (not country!)
- If options contain US state names (Alabama, Oregon, etc.) = state field"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: str = "https://api.openai.com/v1",
        model_name: str = "gpt-4o-mini",
        timeout: int = 30,
        rate_limiter: Optional[RateLimiter] = None,
        enable_logging: bool = True,
    ):
        """
        Initialize the verifier.

        Args:
            api_key: Bearer token for the chat-completions endpoint
            api_base: Base URL for the API
            model_name: Model name to use
            timeout: Request timeout in seconds
            rate_limiter: Optional call budget shared with other paid services
            enable_logging: Whether to log every verification
        """
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.enable_logging = enable_logging

        self._audit_log: List[VerificationResult] = []
        self.stats: Dict[str, int] = {"api_calls": 0, "type_changes": 0, "fallbacks": 0}

        if not self.api_key:
            logger.warning(
                "Verifier API key not configured. Proposed types will be used unverified. "
                "Set VERIFIER_API_KEY to enable verification."
            )

    @property
    def is_available(self) -> bool:
        """Check if the verifier API is configured."""
        return bool(self.api_key)

    def verify(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
        profile_summary: str,
    ) -> VerificationResult:
        """
        Verify a proposed type/answer pair.

        Never raises; on any failure the proposed values come back with
        ``source`` set to the failure kind.
        """
        start_time = time.time()
        input_hash = self._hash_input(form_field, aggregated, proposed_answer)

        if not self.is_available:
            result = self._proposed(aggregated, proposed_answer, SOURCE_NO_API, "No API key - using proposed values")
        else:
            allowed, reason = (True, "OK")
            if self.rate_limiter is not None:
                allowed, reason = self.rate_limiter.can_make_call(self.SERVICE_NAME)

            if not allowed:
                logger.warning(f"Verifier skipped: {reason}")
                result = self._proposed(aggregated, proposed_answer, SOURCE_BUDGET, reason)
            else:
                result = self._verify_remote(form_field, aggregated, proposed_answer, profile_summary)

        result.input_hash = input_hash
        result.processing_time_ms = int((time.time() - start_time) * 1000)
        self._log_verification(form_field, aggregated, result)
        return result

    def _verify_remote(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
        profile_summary: str,
    ) -> VerificationResult:
        prompt = self.build_prompt(form_field, aggregated, proposed_answer, profile_summary)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.0,  # Deterministic output
            "max_tokens": 300,
        }

        try:
            response = requests.post(
                f"{self.api_base}/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
            if self.rate_limiter is not None:
                self.rate_limiter.record_call(self.SERVICE_NAME)
            response.raise_for_status()
            result_data = response.json()
            content = result_data["choices"][0]["message"]["content"]
            tokens_used = result_data.get("usage", {}).get("total_tokens", 0)
        except (requests.RequestException, KeyError, IndexError, ValueError) as e:
            logger.error(f"Verifier API call failed: {e}. Using proposed values.")
            return self._proposed(aggregated, proposed_answer, SOURCE_API_ERROR, f"API error: {e}")

        self.stats["api_calls"] += 1
        result = self._parse_response(content, aggregated, proposed_answer)
        result.tokens_used = tokens_used
        return result

    def _parse_response(
        self,
        response_text: str,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
    ) -> VerificationResult:
        """
        Parse the model's JSON and validate the type against the enum.
        """
        try:
            text = response_text.strip()

            # Handle markdown code blocks
            if "```json" in text:
                json_start = text.find("```json") + 7
                json_end = text.find("```", json_start)
                text = text[json_start:json_end].strip()
            elif "```" in text:
                json_start = text.find("```") + 3
                json_end = text.find("```", json_start)
                text = text[json_start:json_end].strip()

            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")

            type_str = data.get("field_type")
            field_type = ONTOLOGY.parse(type_str)
            if field_type == FieldType.UNKNOWN and str(type_str).strip().lower() != FieldType.UNKNOWN.value:
                logger.warning(f"Verifier suggested invalid type '{type_str}'. Using unknown instead.")

            answer = data.get("answer")
            if answer is not None:
                answer = str(answer).strip()
                if not answer or answer.lower() == "null":
                    answer = None

            confidence = float(data.get("confidence", 0))
            if confidence > 1.0:
                confidence = confidence / 100.0

            return VerificationResult(
                field_type=field_type,
                answer=answer,
                confidence=max(0.0, min(1.0, confidence)),
                reasoning=str(data.get("reasoning", "")),
                source=SOURCE_API,
            )

        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.error(f"Failed to parse verifier response: {e}. Response: {response_text}")
            return self._proposed(aggregated, proposed_answer, SOURCE_PARSE_ERROR, f"Parse error: {e}")

    def _proposed(
        self,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
        source: str,
        reasoning: str,
    ) -> VerificationResult:
        self.stats["fallbacks"] += 1
        return VerificationResult(
            field_type=aggregated.field_type,
            answer=proposed_answer,
            confidence=aggregated.confidence,
            reasoning=reasoning,
            source=source,
        )

    def build_prompt(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
        profile_summary: str,
    ) -> str:
        """Build the verification prompt."""
        question_text = form_field.section or form_field.label or "(no question text)"
        options = json.dumps(list(form_field.options[:20])) if form_field.options else "(text input)"

        signals_summary = "\n".join(
            f"  - {s.source.value.upper()}: {s.field_type.value} ({s.confidence * 100:.0f}%)"
            for s in aggregated.signals
        ) or "  (no signals collected)"

        strong = aggregated.strong_signals()
        agreement_warning = ""
        if len(strong) >= 2:
            agreement_warning = (
                f"\nSTRONG SIGNAL AGREEMENT: {len(strong)} signals agree at 85%+ confidence. "
                f"Only override if you're CERTAIN they're wrong."
            )

        return f"""Your job is to:
1. Verify/correct the field type classification
2. Determine the CORRECT ANSWER based on the applicant's profile

FIELD INFORMATION:
- Question/Section: "{question_text}"
- Label: "{form_field.label or '(no label)'}"
- Field ID: "{form_field.identifier or '(no id)'}"
- Options: {options}
- Field Type: {form_field.element_type or 'unknown'}

CLASSIFICATION SIGNALS:
{signals_summary}
{agreement_warning}

PROPOSED CLASSIFICATION: {aggregated.field_type.value}
PROPOSED ANSWER: {proposed_answer or '(none)'}

APPLICANT PROFILE:
{profile_summary}

AVAILABLE FIELD TYPES:
{', '.join(ONTOLOGY.type_names)}

{self.INFERENCE_RULES}

RESPOND IN THIS EXACT JSON FORMAT:
{{
  "field_type": "the_correct_type",
  "answer": "the_correct_answer_or_null",
  "confidence": 95,
  "reasoning": "Brief explanation of your logic"
}}

For answer:
- Use "Yes" or "No" for boolean questions
- Use the exact option text for dropdowns
- Use the value from profile for text inputs
- Use null if you cannot determine the answer"""

    def _hash_input(
        self,
        form_field: FormField,
        aggregated: AggregatedSignals,
        proposed_answer: Optional[str],
    ) -> str:
        """Generate hash of input for reproducibility verification."""
        input_data = {
            "field": form_field.to_dict(),
            "signals": [s.to_dict() for s in aggregated.signals],
            "proposed_type": aggregated.field_type.value,
            "proposed_answer": proposed_answer,
            "model": self.model_name,
        }
        return hashlib.sha256(
            json.dumps(input_data, sort_keys=True).encode()
        ).hexdigest()[:16]

    def _log_verification(self, form_field: FormField, aggregated: AggregatedSignals, result: VerificationResult):
        """Log verification result for audit trail."""
        self._audit_log.append(result)
        if result.called and result.field_type != aggregated.field_type:
            self.stats["type_changes"] += 1

        if self.enable_logging:
            logger.info(
                f"Verification [{form_field.display_name}]: "
                f"{aggregated.field_type.value} ({aggregated.confidence:.2f}) -> "
                f"{result.field_type.value} ({result.confidence:.2f}) | "
                f"source: {result.source} | hash: {result.input_hash}"
            )

    def get_audit_log(self) -> List[Dict[str, Any]]:
        """Get full verification audit log."""
        return [r.to_dict() for r in self._audit_log]

    def clear_audit_log(self):
        """Clear the verification audit log."""
        self._audit_log = []


def merge_answers(resolver_answer: Optional[str], verifier_answer: Optional[str]) -> Optional[str]:
    """
    Pick between the profile-mapped answer and the verifier's answer.

    - Both Yes/No: the verifier's inference wins
    - A direct profile text value (> 3 chars, not Yes/No) wins
    - Otherwise the verifier's answer, falling back to the resolver's
    """
    if resolver_answer is None:
        return verifier_answer
    if verifier_answer is None or verifier_answer == resolver_answer:
        return resolver_answer
    if resolver_answer in YES_NO and verifier_answer in YES_NO:
        return verifier_answer
    if len(resolver_answer) > 3 and resolver_answer not in YES_NO:
        return resolver_answer
    return verifier_answer
