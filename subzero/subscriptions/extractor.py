"""
Subscription Extractor - turn receipt email text into subscription candidates.

Wraps the extraction oracle (Gemini via call_llm) behind a strict schema:
- Batch strategy: up to EXTRACTION_BATCH_SIZE emails per oracle call, each
  truncated to BATCH_BODY_TRUNCATION chars; larger pools are chunked.
- Single strategy: one call per email (concurrent), SINGLE_BODY_TRUNCATION.

Every returned item is validated on its own; an invalid item is dropped and
its siblings survive. Items below the confidence threshold are discarded.
Oracle failures degrade to "no candidates". Only a missing Gemini
configuration propagates, since it would fail every call the same way.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from datetime import date
from typing import Any

from pydantic import ValidationError

from subzero.config import (
    BATCH_BODY_TRUNCATION,
    CONFIDENCE_THRESHOLD,
    DEFAULT_RENEWAL_DAYS,
    EXTRACTION_BATCH_SIZE,
    EXTRACTION_STRATEGY,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    SINGLE_BODY_TRUNCATION,
)
from subzero.errors import ConfigurationError, ExtractionError
from subzero.llm.retry import call_llm
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event
from subzero.subscriptions.models import ExtractedCandidate

logger = get_logger(__name__)

# (prompt, system_instruction) -> raw response text
Oracle = Callable[[str, str], str]

STRATEGIES = ("batch", "single")

SYSTEM_INSTRUCTION = """You are a financial data extraction assistant.
You read billing, invoice and receipt emails and identify RECURRING
subscriptions (streaming, software, cloud, education, utilities).
Ignore one-time purchases, shipping notifications and promotional emails.
Return only valid JSON. Never invent amounts that are not in the email."""

_FIELDS = """For each subscription provide:
- name: the service or company name (e.g. "Netflix", "Spotify", "AWS")
- amount: the exact billed amount as a number (e.g. 9.99)
- currency: the ISO 4217 code of the billed amount (e.g. "USD", "INR")
- billing_cycle: "monthly" or "yearly"
- category: one of "Streaming", "Software", "Cloud", "Education", "Utilities", "Others"
- renewal_date: the next billing date as YYYY-MM-DD. If only a billing date is
  mentioned, add one billing cycle to it. If no date is mentioned, use the date
  {default_days} days after today.
- confidence: 0 to 1, how sure you are this is a recurring subscription
- email_subject: a short description of the email it came from"""

BATCH_PROMPT = """Today is {today}.

Analyze the following emails and extract every recurring subscription.

{fields}

If no subscriptions are found, return an empty array.
Return JSON matching exactly:
{{"subscriptions": [{{"name": "...", "amount": 0.0, "currency": "USD", "billing_cycle": "monthly", "category": "...", "renewal_date": "YYYY-MM-DD", "confidence": 0.0, "email_subject": "..."}}]}}

Emails to analyze:
{emails}"""

SINGLE_PROMPT = """Today is {today}.

Analyze this email. If it is a receipt or invoice for a recurring subscription,
extract it.

{fields}

If the email is not about a recurring subscription, return null.
Otherwise return one JSON object with exactly those keys.

Email:
{email}"""

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def gemini_oracle(prompt: str, system_instruction: str) -> str:
    """Default oracle: Gemini with retry."""
    return call_llm(prompt, system_instruction=system_instruction, counter_prefix="extractor")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def chunked(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class SubscriptionExtractor:
    """Confidence-gated extraction over the oracle. Stateless between calls."""

    def __init__(
        self,
        strategy: str = EXTRACTION_STRATEGY,
        threshold: float = CONFIDENCE_THRESHOLD,
        oracle: Oracle | None = None,
        batch_size: int = EXTRACTION_BATCH_SIZE,
        timeout: float = LLM_TIMEOUT_SECONDS * LLM_MAX_RETRIES,
        today: Callable[[], date] | None = None,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown extraction strategy: {strategy!r}")
        if not 0 <= threshold <= 1:
            raise ValueError("threshold must be within [0, 1]")

        self.strategy = strategy
        self.threshold = threshold
        self.oracle = oracle or gemini_oracle
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self._today = today or date.today

    async def extract(self, texts: list[str]) -> list[ExtractedCandidate]:
        """Extract candidates from a pool of email texts using the configured strategy."""
        texts = [t for t in texts if t and t.strip()]
        if not texts:
            return []

        if self.strategy == "single":
            results = await asyncio.gather(*(self.extract_from_email(t) for t in texts))
            candidates = [c for c in results if c is not None]
        else:
            candidates = await self.extract_from_batch(texts)

        log_event(
            "extractor.complete",
            strategy=self.strategy,
            emails=len(texts),
            candidates=len(candidates),
        )
        return candidates

    async def extract_from_batch(self, texts: list[str]) -> list[ExtractedCandidate]:
        """
        One oracle call per chunk of at most batch_size emails.

        A failed chunk contributes nothing; other chunks are unaffected.
        """
        if not texts:
            return []

        candidates: list[ExtractedCandidate] = []
        for chunk in chunked(texts, self.batch_size):
            prompt = self._batch_prompt(chunk)
            try:
                raw = await self._invoke(prompt)
                candidates.extend(self._parse_batch(raw))
            except ExtractionError as e:
                counter("extractor.batch_failed")
                logger.warning("Batch extraction failed (%d emails): %s", len(chunk), e)
        return candidates

    async def extract_from_email(self, text: str) -> ExtractedCandidate | None:
        """Extract at most one candidate from a single email."""
        if not text or not text.strip():
            return None

        prompt = SINGLE_PROMPT.format(
            today=self._today().isoformat(),
            fields=self._fields(),
            email=text[:SINGLE_BODY_TRUNCATION],
        )
        try:
            raw = await self._invoke(prompt)
            return self._parse_single(raw)
        except ExtractionError as e:
            counter("extractor.single_failed")
            logger.warning("Single extraction failed: %s", e)
            return None

    def _fields(self) -> str:
        return _FIELDS.format(default_days=DEFAULT_RENEWAL_DAYS)

    def _batch_prompt(self, chunk: list[str]) -> str:
        emails = "\n\n".join(
            f"--- Email {i + 1} ---\n{text[:BATCH_BODY_TRUNCATION]}" for i, text in enumerate(chunk)
        )
        return BATCH_PROMPT.format(
            today=self._today().isoformat(), fields=self._fields(), emails=emails
        )

    async def _invoke(self, prompt: str) -> str:
        """
        Run the oracle off the event loop.

        Raises:
            ExtractionError: Oracle raised, timed out or returned a non-string
        """
        counter("extractor.oracle_calls")
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self.oracle, prompt, SYSTEM_INSTRUCTION),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            counter("extractor.timeout")
            raise ExtractionError("Oracle call timed out") from e
        except ConfigurationError:
            raise
        except Exception as e:
            counter("extractor.oracle_error")
            raise ExtractionError(f"Oracle call failed: {type(e).__name__}") from e

        if not isinstance(raw, str):
            raise ExtractionError("Oracle returned no text")
        return raw

    def _load_json(self, raw: str) -> Any:
        try:
            return json.loads(strip_code_fences(raw))
        except json.JSONDecodeError as e:
            counter("extractor.invalid_json")
            raise ExtractionError(f"Oracle returned invalid JSON: {e.msg}") from e

    def _parse_batch(self, raw: str) -> list[ExtractedCandidate]:
        data = self._load_json(raw)
        if data is None:
            return []
        if isinstance(data, dict):
            items = data.get("subscriptions") or []
        elif isinstance(data, list):
            items = data
        else:
            raise ExtractionError("Unexpected batch response shape")

        if not isinstance(items, list):
            raise ExtractionError("'subscriptions' is not a list")

        candidates = []
        for item in items:
            candidate = self._validate(item)
            if candidate is not None and self._passes(candidate):
                candidates.append(candidate)
        return candidates

    def _parse_single(self, raw: str) -> ExtractedCandidate | None:
        data = self._load_json(raw)
        if data is None:
            return None
        # Some responses wrap the object in the batch envelope anyway
        if isinstance(data, dict) and isinstance(data.get("subscriptions"), list):
            data = data["subscriptions"][0] if data["subscriptions"] else None
        elif isinstance(data, list):
            data = data[0] if data else None
        if data is None:
            return None

        candidate = self._validate(data)
        if candidate is None or not self._passes(candidate):
            return None
        return candidate

    def _validate(self, item: Any) -> ExtractedCandidate | None:
        if not isinstance(item, dict):
            counter("extractor.invalid_item")
            return None
        try:
            return ExtractedCandidate.model_validate(item)
        except ValidationError as e:
            counter("extractor.invalid_item")
            logger.info(
                "Dropped invalid candidate: %s",
                ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors()),
            )
            return None

    def _passes(self, candidate: ExtractedCandidate) -> bool:
        if candidate.confidence < self.threshold:
            counter("extractor.below_threshold")
            return False
        return True
