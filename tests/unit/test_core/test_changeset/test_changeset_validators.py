"""Tests for composable changeset validators and helpers."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from repokit.core.changeset import (
    Changeset,
    copy_change,
    normalize_url,
    put_default_value,
    put_hash,
    redact_field,
    trim_change,
    validate_and_normalize_cidr,
    validate_and_normalize_ip,
    validate_base64,
    validate_date,
    validate_datetime,
    validate_does_not_end_with,
    validate_email,
    validate_hash,
    validate_not_in_cidr,
    validate_one_of,
    validate_required_one_of,
    validate_uri,
)
from repokit.core.crypto import hash_equals, hash_value


def changed(changes, data=None) -> Changeset:
    return Changeset.change({} if data is None else data, changes)


def messages(changeset: Changeset, field: str) -> list[str]:
    return changeset.errors_by_field().get(field, [])


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    """Tests for change-manipulating helpers."""

    def test_trim_change(self):
        assert trim_change(changed({"name": "  Ada "}), "name").changes == {"name": "Ada"}
        assert trim_change(changed({"tags": [" a", "b "]}), "tags").changes == {"tags": ["a", "b"]}
        assert trim_change(changed({}), "name").changes == {}

    def test_copy_change(self):
        changeset = copy_change(changed({"email": "ada@acme.io"}), "email", "login")

        assert changeset.changes == {"email": "ada@acme.io", "login": "ada@acme.io"}

    def test_put_default_value_fills_null_fields(self):
        changeset = put_default_value(changed({}, {"role": None}), "role", "member")

        assert changeset.changes == {"role": "member"}

    def test_put_default_value_keeps_existing_values(self):
        assert put_default_value(changed({}, {"role": "owner"}), "role", "member").changes == {}
        assert put_default_value(changed({"role": "admin"}), "role", "member").changes == {"role": "admin"}

    def test_put_default_value_factories(self):
        calls = []

        def factory():
            calls.append(True)
            return "generated"

        assert put_default_value(changed({}), "token", factory).changes == {"token": "generated"}
        assert put_default_value(changed({}, {"token": "x"}), "token", factory).changes == {}
        assert calls == [True]

        slug = put_default_value(
            changed({"name": "Acme"}), "slug", lambda cs: cs.get_field("name").lower()
        )
        assert slug.get_change("slug") == "acme"

    def test_put_default_value_from_another_field(self):
        changeset = put_default_value(changed({}, {"name": "Ada", "display": None}), "display", from_="name")

        assert changeset.changes == {"display": "Ada"}

    def test_redact_field(self):
        changeset = Changeset.cast({}, {"secret": "s3cr3t", "name": "n"}, ["secret", "name"], types={"secret": str, "name": str})

        redacted = redact_field(changeset, "secret")

        assert redacted.changes == {"name": "n"}
        assert "secret" not in redacted.params

    def test_put_hash(self):
        changeset = changed({"secret": "token", "nonce": "n", "salt": "s"})

        hashed = put_hash(changeset, "secret", "sha3_256", to="secret_hash", with_nonce="nonce", with_salt="salt")

        assert hashed.get_change("secret_hash") == hash_value("sha3_256", "ntokens")
        assert hash_equals("sha3_256", "ntokens", hashed.get_change("secret_hash"))

    def test_put_hash_without_value_is_a_noop(self):
        changeset = changed({})

        assert put_hash(changeset, "secret", "sha3_256", to="secret_hash") is changeset


# ============================================================================
# Validations
# ============================================================================


class TestValidateEmail:
    def test_valid(self):
        assert validate_email(changed({"email": "ada@acme.io"}), "email").valid

    def test_invalid(self):
        changeset = validate_email(changed({"email": "not-an-email"}), "email")

        assert messages(changeset, "email") == ["is an invalid email address"]

    def test_too_long(self):
        email = "a" * 60 + "@" + ".".join(["b" * 30] * 4) + ".io"

        changeset = validate_email(changed({"email": email}), "email")

        assert messages(changeset, "email") == ["should be at most 160 character(s)"]


class TestValidateUri:
    """Tests for validate_uri() and normalize_url()."""

    def test_valid(self):
        assert validate_uri(changed({"url": "https://idp.acme.io/"}), "url").valid

    @pytest.mark.parametrize(
        ("value", "message"),
        [
            ("idp.acme.io", "does not contain a scheme or a host"),
            ("ftp://idp.acme.io/", "only http, https schemes are supported"),
        ],
    )
    def test_invalid(self, value, message):
        changeset = validate_uri(changed({"url": value}), "url")

        assert messages(changeset, "url") == [message]

    def test_bad_port(self):
        changeset = validate_uri(changed({"url": "https://idp.acme.io:99999/"}), "url")

        assert messages(changeset, "url")[0].startswith("is invalid. Error at")

    def test_trailing_slash(self):
        changeset = validate_uri(changed({"url": "https://acme.io/scim"}), "url", require_trailing_slash=True)

        assert messages(changeset, "url") == ["does not end with a trailing slash"]

    @pytest.mark.parametrize(
        ("value", "normalized"),
        [
            ("acme.io", "https://acme.io/"),
            ("http://acme.io:80/scim", "http://acme.io/scim/"),
            ("https://acme.io:8443", "https://acme.io:8443/"),
            ("https://acme.io/a?x=1", "https://acme.io/a/?x=1"),
        ],
    )
    def test_normalize_url(self, value, normalized):
        assert normalize_url(changed({"url": value}), "url").get_change("url") == normalized


class TestNetworkValidators:
    """Tests for IP and CIDR validators."""

    def test_validate_and_normalize_cidr(self):
        assert validate_and_normalize_cidr(changed({"net": "10.1.2.3/8"}), "net").get_change("net") == "10.0.0.0/8"
        invalid = validate_and_normalize_cidr(changed({"net": "10.1.2.3/40"}), "net")
        assert messages(invalid, "net") == ["is not a valid CIDR range"]

    def test_validate_and_normalize_ip(self):
        assert validate_and_normalize_ip(changed({"ip": "2001:DB8::1"}), "ip").get_change("ip") == "2001:db8::1"
        invalid = validate_and_normalize_ip(changed({"ip": "999.1.1.1"}), "ip")
        assert messages(invalid, "ip") == ["is not a valid IP address"]

    @pytest.mark.parametrize(
        ("value", "blocked"),
        [
            ("100.64.1.1", True),
            ("100.0.0.0/8", True),
            ("100.64.0.0/12", True),
            ("10.0.0.0/8", False),
            ("2001:db8::/32", False),
        ],
    )
    def test_validate_not_in_cidr(self, value, blocked):
        changeset = validate_not_in_cidr(changed({"net": value}), "net", "100.64.0.0/10")

        assert changeset.has_errors("net") is blocked
        if blocked:
            assert messages(changeset, "net") == ["can not be in the CIDR 100.64.0.0/10"]

    def test_validate_one_of_accepts_first_passing_rule(self):
        rules = [validate_and_normalize_ip, validate_and_normalize_cidr]

        changeset = validate_one_of(changed({"address": "10.0.0.0/8"}), "address", rules)

        assert changeset.valid

    def test_validate_one_of_reports_every_failure(self):
        rules = [validate_and_normalize_ip, validate_and_normalize_cidr]

        changeset = validate_one_of(changed({"address": "nope"}), "address", rules)

        assert sorted(messages(changeset, "address")) == [
            "is not a valid CIDR range",
            "is not a valid IP address",
        ]


class TestOtherValidators:
    def test_validate_does_not_end_with(self):
        changeset = validate_does_not_end_with(changed({"name": "acme.io."}), "name", ".")

        assert messages(changeset, "name") == ['can not end with "."']

    def test_validate_base64(self):
        assert validate_base64(changed({"key": "aGVsbG8="}), "key").valid
        invalid = validate_base64(changed({"key": "not base64!"}), "key")
        assert messages(invalid, "key") == ["must be a base64-encoded string"]

    def test_validate_required_one_of(self):
        fields = ["email", "phone"]

        assert validate_required_one_of(changed({"phone": "+1"}), fields).valid
        assert validate_required_one_of(changed({}, {"email": "a@acme.io"}), fields).valid

        invalid = validate_required_one_of(changed({}), fields)
        message = "one of these fields must be present: email, phone"
        assert invalid.errors_by_field() == {"email": [message], "phone": [message]}
        assert invalid.errors[0].meta == {"validation": "one_of", "one_of": ("email", "phone")}

    def test_validate_datetime(self):
        boundary = datetime(2024, 1, 1)

        assert validate_datetime(changed({"at": datetime(2024, 1, 2)}), "at", greater_than=boundary).valid
        invalid = validate_datetime(changed({"at": boundary}), "at", greater_than=boundary)
        assert messages(invalid, "at") == ["must be greater than 2024-01-01T00:00:00"]

    def test_validate_date(self):
        invalid = validate_date(changed({"on": date(2023, 12, 31)}), "on", greater_than=date(2024, 1, 1))

        assert messages(invalid, "on") == ["must be greater than 2024-01-01"]


class TestValidateHash:
    """Tests for validate_hash()."""

    def data(self, token_hash):
        return {"token": None, "token_hash": token_hash}

    def test_matching_value(self):
        changeset = changed({"token": "secret"}, self.data(hash_value("sha3_256", "secret")))

        assert validate_hash(changeset, "token", "sha3_256", hash_field="token_hash").valid

    def test_wrong_value(self):
        changeset = changed({"token": "guess"}, self.data(hash_value("sha3_256", "secret")))

        validated = validate_hash(changeset, "token", "sha3_256", hash_field="token_hash")

        assert messages(validated, "token") == ["is invalid"]
        assert validated.errors[0].meta == {"validation": "hash"}

    def test_absent_hash_means_already_verified(self):
        changeset = changed({"token": "secret"}, {"token": None})

        validated = validate_hash(changeset, "token", "sha3_256", hash_field="token_hash")

        assert messages(validated, "token") == ["is already verified"]

    def test_null_hash_matches_nothing(self):
        changeset = changed({"token": "secret"}, self.data(None))

        validated = validate_hash(changeset, "token", "sha3_256", hash_field="token_hash")

        assert messages(validated, "token") == ["is invalid"]

    def test_pending_hash_cannot_be_verified(self):
        changeset = changed({"token": "secret", "token_hash": hash_value("sha3_256", "secret")}, self.data(None))

        validated = validate_hash(changeset, "token", "sha3_256", hash_field="token_hash")

        assert messages(validated, "token") == ["can't be verified"]


class TestCrypto:
    def test_hash_equals_rejects_missing_values(self):
        assert not hash_equals("sha256", None, hash_value("sha256", "x"))
        assert not hash_equals("sha256", "x", None)
        assert hash_equals("sha256", b"x", hash_value("sha256", "x"))

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            hash_value("not-a-hash", "x")
