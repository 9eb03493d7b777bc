"""Tests for fingerprint derivation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from cachesync.shared.fingerprint import canonical_params, fingerprint_digest, make_fingerprint


class TestMakeFingerprint:
    def test_resource_and_id(self):
        assert make_fingerprint("users", 1) == "users:1"

    def test_params_are_sorted_and_lowercased(self):
        fingerprint = make_fingerprint("users", None, {"Sort": "Name", "page": 2})

        assert fingerprint == "users:page=2:sort=name"

    def test_empty_params_are_dropped(self):
        assert make_fingerprint("users", 1, {"q": None, "lang": ""}) == "users:1"

    def test_empty_resource_rejected(self):
        with pytest.raises(ValueError, match="resource"):
            make_fingerprint("")

    @given(
        st.dictionaries(
            st.text(alphabet="abcdefgh", min_size=1, max_size=5),
            st.integers(min_value=0, max_value=100),
            max_size=5,
        )
    )
    def test_parameter_order_does_not_matter(self, params):
        reordered = dict(reversed(list(params.items())))

        assert make_fingerprint("users", None, params) == make_fingerprint("users", None, reordered)


class TestCanonicalParams:
    def test_none_is_empty(self):
        assert canonical_params(None) == {}

    def test_values_lowercased(self):
        assert canonical_params({"Lang": "KO", "page": 1}) == {"lang": "ko", "page": 1}


def test_digest_is_stable_sha256():
    digest = fingerprint_digest("users:1")

    assert len(digest) == 64
    assert digest == fingerprint_digest("users:1")
    assert digest != fingerprint_digest("users:2")
