"""Unit tests for Argon2id derived keys."""

import base64
import re

import pytest
from argon2.low_level import Type, hash_secret_raw

from todos.service.passwords import (
    DEFAULT_PARAMS,
    DerivedKeyError,
    DerivedKeyParams,
    DerivedKeyParseError,
    create_derived_key,
    needs_rehash,
    parse_derived_key,
    verify_derived_key,
)

CHEAP = DerivedKeyParams(time_cost=1, memory_cost=1024, parallelism=1)

# Standard base64 with padding: 16 byte salt -> 24 chars, 32 byte key -> 44 chars
_FORMAT = re.compile(
    r"^\$argon2id\$v=19\$m=65536,t=1,p=2\$[A-Za-z0-9+/]{22}==\$[A-Za-z0-9+/]{43}=$"
)


class TestCreateDerivedKey:
    def test_default_parameters_produce_expected_format(self):
        dk = create_derived_key("theeaglefliesatmidnight")
        assert _FORMAT.match(dk), dk

    def test_same_password_gets_distinct_salts(self):
        first = create_derived_key("supersecretsquirrel", CHEAP)
        second = create_derived_key("supersecretsquirrel", CHEAP)
        assert first != second
        assert parse_derived_key(first).salt != parse_derived_key(second).salt

    def test_parameters_are_embedded(self):
        params = DerivedKeyParams(time_cost=2, memory_cost=2048, parallelism=3, salt_len=12, key_len=24)
        parsed = parse_derived_key(create_derived_key("hunter22", params))
        assert parsed.time_cost == 2
        assert parsed.memory_cost == 2048
        assert parsed.parallelism == 3
        assert len(parsed.salt) == 12
        assert len(parsed.hash) == 24

    def test_salt_failure_is_reported(self, monkeypatch):
        def broken(_n):
            raise OSError("no entropy")

        monkeypatch.setattr("todos.service.passwords.secrets.token_bytes", broken)
        with pytest.raises(DerivedKeyError) as excinfo:
            create_derived_key("password123", CHEAP)
        assert "16 length salt" in excinfo.value.message
        assert excinfo.value.status_code == 500


class TestVerifyDerivedKey:
    def test_round_trip_with_defaults(self):
        dk = create_derived_key("theeaglefliesatmidnight")
        assert verify_derived_key(dk, "theeaglefliesatmidnight") is True
        assert verify_derived_key(dk, "theeaglefliesatnoon") is False

    def test_matches_reference_argon2id_output(self):
        salt = bytes(range(16))
        raw = hash_secret_raw(
            b"supersecretsquirrel", salt, time_cost=1, memory_cost=1024,
            parallelism=1, hash_len=32, type=Type.ID,
        )
        dk = "$argon2id$v=19$m=1024,t=1,p=1${}${}".format(
            base64.b64encode(salt).decode(), base64.b64encode(raw).decode()
        )
        assert verify_derived_key(dk, "supersecretsquirrel")
        assert not verify_derived_key(dk, "supersecretsquirreL")

    @pytest.mark.parametrize("dk,password", [("", "password"), ("$argon2id$v=19$m=1024,t=1,p=1$c2FsdHNhbHQ=$a2V5a2V5a2V5", "")])
    def test_empty_inputs_are_errors(self, dk, password):
        with pytest.raises(DerivedKeyParseError):
            verify_derived_key(dk, password)

    def test_uses_stored_parameters_not_defaults(self):
        dk = create_derived_key("changingdefaults", CHEAP)
        assert needs_rehash(dk, DEFAULT_PARAMS)
        assert verify_derived_key(dk, "changingdefaults")


class TestParseDerivedKey:
    def test_parses_components(self):
        dk = create_derived_key("supersecretsquirrel")
        parsed = parse_derived_key(dk)
        assert parsed.time_cost == 1
        assert parsed.memory_cost == 64 * 1024
        assert parsed.parallelism == 2
        assert len(parsed.salt) == 16
        assert len(parsed.hash) == 32
        assert parsed.params == DEFAULT_PARAMS
        assert not needs_rehash(dk)

    @pytest.mark.parametrize(
        "dk",
        [
            "",
            "notarealkey",
            "$argon2i$v=19$m=65536,t=1,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=18$m=65536,t=1,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=65536,t=99999999999,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=65536,t=1,p=256$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=4294967296,t=1,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=65536,t=0,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=65536,t=1,p=2$c2FsdA=$a2V5a2V5a2V5a2V5",
            "$argon2id$v=19$m=65536,t=1,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5$extra",
            "$argon2id$v=19$m=65536,t=1,p=2$c2FsdHNhbHRzYWx0c2FsdA==$a2V5a2V5a2V5a2V5\n",
        ],
    )
    def test_malformed_keys_are_rejected(self, dk):
        with pytest.raises(DerivedKeyParseError) as excinfo:
            parse_derived_key(dk)
        assert excinfo.value.status_code == 400

    def test_parse_error_is_a_derived_key_error(self):
        assert issubclass(DerivedKeyParseError, DerivedKeyError)
