from __future__ import annotations

import hashlib
import hmac

import pytest

from coworkhub.domain.models import Booking
from coworkhub.persistence.guards import TenantPredicateError, tenant_predicate
from coworkhub.services.audit import sanitize_metadata
from coworkhub.services.auth.api_keys import generate_api_key, hash_api_key, normalize_role, role_allows
from coworkhub.services.renewal_notifications import build_renewal_signature


def test_sanitize_metadata_redacts_nested_secrets() -> None:
    payload = {
        "user_id": "user-1",
        "api_key": "chk_abc",
        "nested": {"Authorization": "Bearer x", "card_number": "4111", "note": "ok"},
        "items": [{"password": "hunter2"}, {"label": "desk"}],
    }
    assert sanitize_metadata(payload) == {
        "user_id": "user-1",
        "api_key": "[REDACTED]",
        "nested": {"Authorization": "[REDACTED]", "card_number": "[REDACTED]", "note": "ok"},
        "items": [{"password": "[REDACTED]"}, {"label": "desk"}],
    }


def test_tenant_predicate_requires_tenant() -> None:
    with pytest.raises(TenantPredicateError):
        tenant_predicate(Booking, "")
    assert tenant_predicate(Booking, "t1") is not None


def test_role_hierarchy() -> None:
    assert role_allows(role="admin", minimum_role="editor")
    assert role_allows(role="editor", minimum_role="reader")
    assert not role_allows(role="reader", minimum_role="editor")
    assert not role_allows(role="unknown", minimum_role="reader")
    assert normalize_role(" Editor ") == "editor"
    with pytest.raises(ValueError):
        normalize_role("owner")


def test_generated_keys_embed_id_and_hash_deterministically() -> None:
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    assert raw_key.startswith(f"chk_{key_id}_")
    assert raw_key.startswith(key_prefix)
    assert key_hash == hash_api_key(raw_key)
    assert key_hash != raw_key


def test_renewal_signature_is_hmac_sha256() -> None:
    body = b'{"event":"renewal_proposal.created"}'
    expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
    assert build_renewal_signature("secret", body) == expected
