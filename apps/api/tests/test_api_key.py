"""Tests for API key issuance and lookup."""

from sqlalchemy.orm import Session

from forj_api.auth.api_key import (
    compute_key_digest,
    compute_key_prefix,
    create_api_key,
    generate_api_key,
    get_actor_by_api_key,
)
from forj_api.auth.policy import Role
from forj_api.models import APIKey


class TestKeyFormat:
    """Test key generation."""

    def test_generated_keys_are_unique(self):
        first, second = generate_api_key(), generate_api_key()
        assert first.startswith("forj_")
        assert first != second

    def test_digest_depends_on_secret(self):
        key = generate_api_key()
        assert compute_key_digest(key, "one") != compute_key_digest(key, "two")
        assert compute_key_prefix(key) == key[:8]


class TestLookup:
    """Test resolving keys to actors."""

    def test_key_resolves_to_actor(self, db: Session):
        api_key, raw_key = create_api_key(db, "operator_1", "Otto Operator", Role.OPERATOR, label="ci")
        db.commit()

        actor = get_actor_by_api_key(db, raw_key)
        assert actor is not None
        assert actor.actor_id == "operator_1"
        assert actor.role is Role.OPERATOR
        assert db.get(APIKey, api_key.id).last_used_at is not None

    def test_raw_key_is_not_stored(self, db: Session):
        api_key, raw_key = create_api_key(db, "admin_1", "Ada Admin", Role.ADMIN)
        db.commit()
        assert api_key.digest != raw_key
        assert raw_key not in api_key.digest

    def test_wrong_secret_returns_none(self, db: Session):
        _, raw_key = create_api_key(db, "admin_1", "Ada Admin", Role.ADMIN)
        db.commit()
        # Same prefix, different secret
        assert get_actor_by_api_key(db, raw_key[:8] + "x" * 30) is None

    def test_revoked_key_returns_none(self, db: Session):
        api_key, raw_key = create_api_key(db, "client_1", "Cora Client", Role.CLIENT)
        api_key.is_active = False
        db.commit()
        assert get_actor_by_api_key(db, raw_key) is None

    def test_short_or_empty_key_returns_none(self, db: Session):
        assert get_actor_by_api_key(db, "") is None
        assert get_actor_by_api_key(db, "abc") is None
