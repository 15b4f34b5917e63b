"""
Unit tests for caller token validation (src/scoped_asana/auth.py).

Each test targets one step of validate_token():

1. Header presence check
2. Bearer scheme extraction
3. JWT signature verification
4. Expiration check
5. Subject claim
"""

import pytest

from conftest import TEST_SECRET
from scoped_asana.auth import AuthError, validate_token


class TestValidateToken:
    # ----- Happy path -----

    def test_valid_token_returns_subject(self, make_auth_header):
        header = make_auth_header(sub="ci-agent")

        assert validate_token(header, TEST_SECRET).subject == "ci-agent"

    def test_bearer_scheme_case_insensitive(self, make_token):
        token = make_token(sub="alice")

        assert validate_token(f"bearer {token}", TEST_SECRET).subject == "alice"

    # ----- Missing / malformed Authorization header -----

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_raises_auth_error(self, header):
        with pytest.raises(AuthError, match="Missing Authorization header"):
            validate_token(header, TEST_SECRET)

    def test_non_bearer_scheme_raises_auth_error(self, make_token):
        with pytest.raises(AuthError, match="Invalid Authorization header format"):
            validate_token(f"Basic {make_token()}", TEST_SECRET)

    @pytest.mark.parametrize("header", ["Bearer", "Bearer   "])
    def test_missing_token_after_bearer_raises_auth_error(self, header):
        with pytest.raises(AuthError, match="Invalid Authorization header format"):
            validate_token(header, TEST_SECRET)

    # ----- JWT signature and structure -----

    def test_malformed_token_raises_auth_error(self):
        with pytest.raises(AuthError, match="Invalid token"):
            validate_token("Bearer not-a-jwt-token", TEST_SECRET)

    def test_wrong_signing_key_raises_auth_error(self, make_token):
        """A token signed with another key is a forgery, whatever its claims say."""
        token = make_token(sub="attacker", secret="wrong-secret")

        with pytest.raises(AuthError, match="Invalid token"):
            validate_token(f"Bearer {token}", TEST_SECRET)

    def test_unexpected_algorithm_rejected(self, make_token):
        token = make_token(algorithm="HS512")

        with pytest.raises(AuthError, match="Invalid token"):
            validate_token(f"Bearer {token}", TEST_SECRET, algorithm="HS256")

    # ----- Expiration -----

    def test_expired_token_raises_auth_error(self, make_token):
        token = make_token(exp_hours=-1)

        with pytest.raises(AuthError, match="Token has expired"):
            validate_token(f"Bearer {token}", TEST_SECRET)

    def test_token_without_exp_claim_raises_auth_error(self, make_token):
        token = make_token(include_exp=False)

        with pytest.raises(AuthError, match="Invalid token"):
            validate_token(f"Bearer {token}", TEST_SECRET)

    # ----- Sub claim -----

    def test_token_without_sub_claim_raises_auth_error(self, make_token):
        """The subject identifies the caller in the audit log, so it is mandatory."""
        token = make_token(include_sub=False)

        with pytest.raises(AuthError, match="Invalid token"):
            validate_token(f"Bearer {token}", TEST_SECRET)

    def test_auth_error_defaults_to_401(self):
        assert AuthError("nope").status_code == 401
