"""Unit tests for the Subscription Extractor

The oracle is a plain callable, so tests pass a fake that records prompts and
returns canned JSON.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from datetime import date

import pytest

from subzero.errors import ConfigurationError
from subzero.observability.telemetry import get_counter
from subzero.subscriptions.extractor import (
    SYSTEM_INSTRUCTION,
    SubscriptionExtractor,
    chunked,
    strip_code_fences,
)


class FakeOracle:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, prompt, system_instruction):
        assert system_instruction == SYSTEM_INSTRUCTION
        # single strategy calls from worker threads
        with self._lock:
            self.prompts.append(prompt)
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def item(name="Netflix", confidence=0.9, **overrides):
    data = {
        "name": name,
        "amount": 649,
        "currency": "INR",
        "billing_cycle": "monthly",
        "category": "Streaming",
        "renewal_date": "2026-11-05",
        "confidence": confidence,
        "email_subject": "Your Netflix receipt",
    }
    data.update(overrides)
    return data


def envelope(*items):
    return json.dumps({"subscriptions": list(items)})


def make_extractor(oracle, **kwargs):
    return SubscriptionExtractor(oracle=oracle, today=lambda: date(2026, 10, 18), **kwargs)


def test_batch_extracts_valid_candidates():
    oracle = FakeOracle(envelope(item(), item("Spotify", amount=119)))
    extractor = make_extractor(oracle)

    candidates = asyncio.run(extractor.extract(["email one", "email two"]))

    assert [c.name for c in candidates] == ["Netflix", "Spotify"]
    assert candidates[0].renewal_date == date(2026, 11, 5)
    assert len(oracle.prompts) == 1
    assert "Today is 2026-10-18." in oracle.prompts[0]
    assert "--- Email 1 ---\nemail one" in oracle.prompts[0]
    assert "--- Email 2 ---\nemail two" in oracle.prompts[0]


def test_low_confidence_items_are_discarded():
    oracle = FakeOracle(envelope(item(confidence=0.59), item("Spotify", confidence=0.6)))
    extractor = make_extractor(oracle)

    candidates = asyncio.run(extractor.extract(["email"]))

    assert [c.name for c in candidates] == ["Spotify"]
    assert get_counter("extractor.below_threshold") == 1


def test_invalid_item_is_dropped_and_siblings_survive():
    oracle = FakeOracle(
        envelope(
            item("Bad Date", renewal_date="next month"),
            item("Bad Amount", amount=-5),
            item("Bad Cycle", billing_cycle="weekly"),
            "not an object",
            item("Notion", category="software"),
        )
    )
    extractor = make_extractor(oracle)

    candidates = asyncio.run(extractor.extract(["email"]))

    assert [c.name for c in candidates] == ["Notion"]
    assert candidates[0].category == "Software"
    assert get_counter("extractor.invalid_item") == 4


def test_code_fenced_response_is_parsed():
    oracle = FakeOracle("```json\n" + envelope(item()) + "\n```")

    candidates = asyncio.run(make_extractor(oracle).extract(["email"]))

    assert [c.name for c in candidates] == ["Netflix"]


def test_bare_list_response_is_accepted():
    oracle = FakeOracle(json.dumps([item()]))

    candidates = asyncio.run(make_extractor(oracle).extract(["email"]))

    assert len(candidates) == 1


@pytest.mark.parametrize("response", ["null", '{"subscriptions": []}', "[]"])
def test_empty_responses_yield_no_candidates(response):
    assert asyncio.run(make_extractor(FakeOracle(response)).extract(["email"])) == []


def test_invalid_json_degrades_to_empty():
    oracle = FakeOracle("I found a Netflix subscription!")

    assert asyncio.run(make_extractor(oracle).extract(["email"])) == []
    assert get_counter("extractor.invalid_json") == 1
    assert get_counter("extractor.batch_failed") == 1


def test_oracle_exception_degrades_to_empty():
    oracle = FakeOracle(RuntimeError("quota exceeded"))

    assert asyncio.run(make_extractor(oracle).extract(["email"])) == []
    assert get_counter("extractor.oracle_error") == 1


def test_oracle_timeout_degrades_to_empty():
    def slow_oracle(prompt, system_instruction):
        time.sleep(0.3)
        return envelope(item())

    extractor = make_extractor(slow_oracle, timeout=0.05)

    assert asyncio.run(extractor.extract(["email"])) == []
    assert get_counter("extractor.timeout") == 1


def test_missing_llm_configuration_propagates():
    oracle = FakeOracle(ConfigurationError("GOOGLE_API_KEY not set"))

    with pytest.raises(ConfigurationError):
        asyncio.run(make_extractor(oracle).extract(["email"]))


def test_large_pools_are_chunked_and_failed_chunk_is_isolated():
    oracle = FakeOracle(RuntimeError("boom"), envelope(item("Spotify")), envelope(item("AWS")))
    extractor = make_extractor(oracle, batch_size=2)

    candidates = asyncio.run(extractor.extract([f"email {i}" for i in range(5)]))

    assert len(oracle.prompts) == 3
    assert "--- Email 3 ---" not in oracle.prompts[0]
    assert "--- Email 1 ---\nemail 4" in oracle.prompts[2]
    assert [c.name for c in candidates] == ["Spotify", "AWS"]


def test_batch_bodies_are_truncated():
    oracle = FakeOracle(envelope())
    long_body = "x" * 2500 + "TAIL"

    asyncio.run(make_extractor(oracle).extract([long_body]))

    assert "x" * 2000 in oracle.prompts[0]
    assert "x" * 2001 not in oracle.prompts[0]
    assert "TAIL" not in oracle.prompts[0]


def test_blank_texts_skip_the_oracle():
    oracle = FakeOracle(envelope(item()))

    assert asyncio.run(make_extractor(oracle).extract(["", "   "])) == []
    assert oracle.prompts == []


def test_single_strategy_calls_oracle_per_email():
    oracle = FakeOracle(json.dumps(item()), "null", json.dumps(item("Spotify")))
    extractor = make_extractor(oracle, strategy="single")

    candidates = asyncio.run(extractor.extract(["a", "b", "c"]))

    assert len(oracle.prompts) == 3
    assert sorted(c.name for c in candidates) == ["Netflix", "Spotify"]


def test_single_email_truncated_to_3000_chars():
    oracle = FakeOracle("null")
    extractor = make_extractor(oracle, strategy="single")

    result = asyncio.run(extractor.extract_from_email("y" * 3500))

    assert result is None
    assert "y" * 3000 in oracle.prompts[0]
    assert "y" * 3001 not in oracle.prompts[0]


def test_single_accepts_batch_envelope():
    oracle = FakeOracle(envelope(item()))
    extractor = make_extractor(oracle, strategy="single")

    result = asyncio.run(extractor.extract_from_email("email"))

    assert result is not None
    assert result.name == "Netflix"


def test_single_low_confidence_returns_none():
    oracle = FakeOracle(json.dumps(item(confidence=0.2)))

    assert asyncio.run(make_extractor(oracle).extract_from_email("email")) is None


def test_item_without_category_is_dropped():
    data = item()
    del data["category"]
    oracle = FakeOracle(envelope(data, item("Spotify", amount=119, category="Podcasts")))

    assert asyncio.run(make_extractor(oracle).extract(["email"])) == []
    assert get_counter("extractor.invalid_item") == 2


@pytest.mark.parametrize(
    "renewal_date", ["2026-11-05T00:00:00Z", "2026-11-05 garbage", "2026-W45-1", "20261105"]
)
def test_renewal_date_must_be_plain_iso_date(renewal_date):
    oracle = FakeOracle(envelope(item(renewal_date=renewal_date)))

    assert asyncio.run(make_extractor(oracle).extract(["email"])) == []


def test_missing_currency_defaults_to_base():
    data = item()
    del data["currency"]
    oracle = FakeOracle(envelope(data))

    candidates = asyncio.run(make_extractor(oracle).extract(["email"]))

    assert candidates[0].currency == "INR"


@pytest.mark.parametrize("kwargs", [{"strategy": "parallel"}, {"threshold": 1.5}])
def test_invalid_configuration_rejected(kwargs):
    with pytest.raises(ValueError):
        SubscriptionExtractor(oracle=FakeOracle("null"), **kwargs)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n[]\n```') == "[]"
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_chunked():
    assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]
    assert chunked([], 2) == []
