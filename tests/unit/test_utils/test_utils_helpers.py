"""Token encryption, LLM JSON extraction and clock helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskscout.errors import CredentialError
from taskscout.utils.clock import ensure_aware, parse_rfc3339, to_rfc3339
from taskscout.utils.crypto import TokenCipher
from taskscout.utils.llm_json import extract_json_array, extract_json_object, strip_reasoning


# ─────────────────────────────────────────────────────────────────────────────
# 1. TokenCipher
# ─────────────────────────────────────────────────────────────────────────────

def test_cipher_round_trip_hides_plaintext():
    cipher = TokenCipher("secret")
    token = cipher.encrypt("ya29.access")
    assert token != "ya29.access"
    assert cipher.decrypt(token) == "ya29.access"
    assert cipher.enabled is True


def test_cipher_without_key_is_passthrough():
    cipher = TokenCipher("")
    assert cipher.enabled is False
    assert cipher.encrypt("plain") == "plain"
    assert cipher.decrypt("plain") == "plain"


def test_wrong_key_raises_credential_error():
    token = TokenCipher("one").encrypt("value")
    with pytest.raises(CredentialError):
        TokenCipher("two").decrypt(token)


# ─────────────────────────────────────────────────────────────────────────────
# 2. LLM JSON
# ─────────────────────────────────────────────────────────────────────────────

def test_reasoning_block_is_stripped():
    assert strip_reasoning("<think>hmm</think>[1]").strip() == "[1]"
    assert strip_reasoning("no think") == "no think"


def test_array_from_prose_and_fences():
    raw = 'Sure!\n```json\n[{"title": "a", "query": "b"}]\n```'
    assert extract_json_array(raw) == [{"title": "a", "query": "b"}]


def test_array_from_queries_wrapper():
    assert extract_json_array('{"queries": [{"query": "x"}]}') == [{"query": "x"}]


def test_object_extraction():
    assert extract_json_object('<think>x</think>{"report": {"overview": "o"}}') == {"report": {"overview": "o"}}


@pytest.mark.parametrize("raw", ["nothing here", "[1, 2]"])
def test_object_missing_raises(raw):
    with pytest.raises(ValueError):
        extract_json_object(raw)


def test_array_missing_raises():
    with pytest.raises(ValueError):
        extract_json_array("plain prose")


# ─────────────────────────────────────────────────────────────────────────────
# 3. Clock
# ─────────────────────────────────────────────────────────────────────────────

def test_rfc3339_zulu_round_trip():
    parsed = parse_rfc3339("2026-03-01T09:30:00Z")
    assert parsed == datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert to_rfc3339(parsed) == "2026-03-01T09:30:00Z"


def test_naive_datetime_is_treated_as_utc():
    assert ensure_aware(datetime(2026, 1, 1)).tzinfo == timezone.utc
