"""Tests for polymorphic embedded documents."""

from __future__ import annotations

from typing import Any

import pytest

from repokit.core.changeset import Changeset, EmbeddedSchema, PolymorphicEmbed, cast_polymorphic_embed
from repokit.core.database.exceptions import ChangesetError, ChangesetInvalidError
from tests.fixtures.models import EmailConfig, OpenIDConnectConfig, Provider, adapter_config

TYPES = {"name": str, "adapter_config": dict[str, Any]}
OIDC = {
    "type": "openid_connect",
    "client_id": "client",
    "discovery_document_uri": "https://idp.acme.io/.well-known/openid-configuration",
}


def provider(config=None, **params):
    data = {"name": "Acme", "adapter_config": config}
    return Changeset.cast(data, params, ["name", "adapter_config"], types=TYPES)


# ============================================================================
# PolymorphicEmbed
# ============================================================================


class TestPolymorphicEmbed:
    """Tests for variant dispatch."""

    def test_variants_are_keyed_by_tag(self):
        assert adapter_config.variants == {"openid_connect": OpenIDConnectConfig, "email": EmailConfig}
        assert adapter_config.variant_for("email") is EmailConfig
        assert adapter_config.variant_for("saml") is None

    def test_load_and_dump(self):
        config = adapter_config.load({"type": "email", "sender": "ops@acme.io"})

        assert isinstance(config, EmailConfig)
        assert adapter_config.dump(config) == {"type": "email", "sender": "ops@acme.io", "reply_to": None}

    def test_unknown_tag_is_invalid(self):
        changeset = adapter_config({}, {"type": "saml"})

        assert changeset.errors_by_field() == {"type": ["is invalid"]}
        assert changeset.errors[0].meta == {"validation": "inclusion"}

    def test_missing_tag_is_invalid(self):
        assert not adapter_config({}, {"sender": "ops@acme.io"}).valid

    def test_tag_comes_from_current_value(self):
        changeset = adapter_config({"type": "email", "sender": "a@acme.io"}, {"reply_to": "b@acme.io"})

        assert changeset.valid
        assert changeset.changes == {"reply_to": "b@acme.io"}

    def test_switching_variants_discards_old_fields(self):
        changeset = adapter_config({"type": "email", "sender": "a@acme.io"}, OIDC)

        assert changeset.data == {}
        assert changeset.apply_action("dump") == OpenIDConnectConfig(**OIDC)

    def test_variant_rules_run(self):
        changeset = adapter_config({}, {**OIDC, "discovery_document_uri": "idp"})

        assert changeset.errors_by_field() == {
            "discovery_document_uri": ["does not contain a scheme or a host"]
        }

    def test_required_fields(self):
        changeset = adapter_config({}, {"type": "openid_connect"})

        assert changeset.errors_by_field() == {
            "client_id": ["can't be blank"],
            "discovery_document_uri": ["can't be blank"],
        }

    def test_needs_variants(self):
        with pytest.raises(ChangesetError):
            PolymorphicEmbed()

    def test_variant_without_tag_field_is_rejected(self):
        class Untagged(EmbeddedSchema):
            value: str

        with pytest.raises(ChangesetError, match="has no 'type' field"):
            PolymorphicEmbed(Untagged)

    def test_single_variant(self):
        embed = PolymorphicEmbed(EmailConfig)

        assert isinstance(embed.load({"type": "email", "sender": "a@acme.io"}), EmailConfig)


# ============================================================================
# cast_polymorphic_embed
# ============================================================================


class TestCastPolymorphicEmbed:
    """Tests for embedding a nested changeset in a parent changeset."""

    def test_valid_embed_is_flattened_when_applied(self):
        changeset = cast_polymorphic_embed(
            provider(adapter_config={"type": "email", "sender": "ops@acme.io"}),
            "adapter_config",
            with_=adapter_config,
        )

        assert changeset.valid
        assert isinstance(changeset.get_change("adapter_config"), Changeset)

        result = changeset.apply_action("update")

        assert result == {
            "name": "Acme",
            "adapter_config": {"type": "email", "sender": "ops@acme.io", "reply_to": None},
        }

    def test_mapped_json_column(self):
        """A JSON column on an ORM model is accepted without explicit types."""
        stored = Provider(name="Email", adapter_config={"type": "email", "sender": "ops@acme.io"})
        changeset = Changeset.cast(stored, {"adapter_config": OIDC}, ["adapter_config"])

        changeset = cast_polymorphic_embed(changeset, "adapter_config", with_=adapter_config)

        assert changeset.valid
        assert changeset.run_prepare().get_change("adapter_config") == OIDC

    def test_nested_changeset_inherits_parent_action(self):
        changeset = cast_polymorphic_embed(
            provider(adapter_config=OIDC).with_action("insert"), "adapter_config", with_=adapter_config
        )

        assert changeset.get_change("adapter_config").action == "insert"

    def test_nested_action_defaults_to_update(self):
        changeset = cast_polymorphic_embed(provider(adapter_config=OIDC), "adapter_config", with_=adapter_config)

        assert changeset.get_change("adapter_config").action == "update"

    def test_partial_update_merges_with_current_value(self):
        current = {"type": "email", "sender": "a@acme.io", "reply_to": "r@acme.io"}

        changeset = cast_polymorphic_embed(
            provider(current, adapter_config={"sender": "b@acme.io"}),
            "adapter_config",
            with_=adapter_config,
        )

        assert changeset.apply_action("update")["adapter_config"] == {
            "type": "email",
            "sender": "b@acme.io",
            "reply_to": "r@acme.io",
        }

    def test_invalid_embed_invalidates_parent(self):
        changeset = cast_polymorphic_embed(
            provider(adapter_config={"type": "email", "sender": "nope"}),
            "adapter_config",
            with_=adapter_config,
        )

        assert not changeset.valid
        assert changeset.errors_by_field() == {
            "adapter_config": {"sender": ["is an invalid email address"]}
        }
        with pytest.raises(ChangesetInvalidError):
            changeset.apply_action("update")

    def test_required_embed(self):
        changeset = cast_polymorphic_embed(provider(), "adapter_config", with_=adapter_config, required=True)

        assert changeset.errors_by_field() == {"adapter_config": ["can't be blank"]}
        assert changeset.errors[0].meta == {"validation": "required"}

    def test_required_embed_satisfied_by_current_value(self):
        changeset = cast_polymorphic_embed(
            provider(OIDC), "adapter_config", with_=adapter_config, required=True
        )

        assert changeset.valid
        assert changeset.apply_action("update")["adapter_config"] == OIDC

    def test_field_with_cast_error_is_left_alone(self):
        changeset = cast_polymorphic_embed(
            provider(adapter_config="not a map"), "adapter_config", with_=adapter_config
        )

        assert changeset.errors_by_field() == {"adapter_config": ["is invalid"]}
        assert not changeset.has_change("adapter_config")

    def test_field_must_be_declared_as_mapping(self):
        changeset = Changeset.cast({}, {}, ["adapter_config"], types={"adapter_config": str})

        with pytest.raises(ChangesetError, match="must be declared as a mapping"):
            cast_polymorphic_embed(changeset, "adapter_config", with_=adapter_config)

    def test_builder_must_return_a_changeset(self):
        with pytest.raises(ChangesetError, match="must return a Changeset"):
            cast_polymorphic_embed(provider(OIDC), "adapter_config", with_=lambda current, attrs: None)
