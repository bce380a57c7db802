"""
Tests: bearer token helpers and identity resolution.
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from app.services.jwt_service import (
    ALGORITHM,
    decode_access_token,
    generate_access_token,
    token_for_user,
)


class TestTokens:
    def test_round_trip(self):
        payload = decode_access_token(generate_access_token(7, ["finance"]))
        assert payload["sub"] == "7"
        assert payload["roles"] == ["finance"]
        assert payload["iss"] == "sales-ops"

    def test_token_for_user_carries_role(self, make_user):
        user = make_user(role="sales_rep")
        assert decode_access_token(token_for_user(user))["roles"] == ["sales_rep"]

    def test_expired(self, app):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = pyjwt.encode(
            {"sub": "1", "iss": "sales-ops", "iat": past, "exp": past + timedelta(minutes=5)},
            app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM,
        )
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_foreign_issuer(self, app):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode(
            {"sub": "1", "iss": "someone-else", "exp": now + timedelta(minutes=5)},
            app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM,
        )
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)

    def test_garbage(self):
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token("not.a.token")


class TestIdentityResolution:
    def test_invalid_bearer_falls_back_to_unauthenticated(self, client):
        res = client.get("/api/v1/approvals/pending/my",
                         headers={"Authorization": "Bearer not.a.token"})
        assert res.status_code == 401

    def test_header_ignored_when_auth_enabled(self, app, client, make_user):
        user = make_user()
        app.config["API_AUTH_ENABLED"] = "true"
        try:
            res = client.get("/api/v1/approvals/pending/my", headers={"X-User-Id": str(user.id)})
            assert res.status_code == 401
            res = client.get("/api/v1/approvals/pending/my",
                             headers={"Authorization": f"Bearer {token_for_user(user)}"})
            assert res.status_code == 200
        finally:
            app.config["API_AUTH_ENABLED"] = "false"
