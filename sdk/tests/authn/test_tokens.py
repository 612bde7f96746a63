"""Tests for JWT issuance, verification, rotation and revocation."""

import dataclasses
from datetime import timedelta

import jwt
import pytest

from fleetaccess import Config, InvalidToken, Role
from fleetaccess.authn.tokens import AccessClaims, ImpersonationClaims, TokenService
from fleetaccess.repositories.memory import MemoryRevocationStore


@pytest.fixture
def tokens(access):
    return access.tokens


@pytest.fixture
def user(access):
    return access.users.get("28")


class TestIssueAccessToken:
    def test_round_trip_claims(self, tokens, user, config):
        token, issued = tokens.issue_access_token(user)

        claims = tokens.verify(token)

        assert isinstance(claims, AccessClaims)
        assert claims.id == "28"
        assert claims.sub == "28"
        assert claims.role == Role.USER
        assert claims.jti == issued.jti
        assert claims.exp - claims.iat == config.ACCESS_TOKEN_TTL

    def test_payload_carries_issuer_and_audience(self, tokens, user, config):
        token, _ = tokens.issue_access_token(user)
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["iss"] == config.JWT_ISSUER
        assert payload["aud"] == config.JWT_AUDIENCE
        assert payload["tokenType"] == "access"

    def test_each_token_has_unique_jti(self, tokens, user):
        _, first = tokens.issue_access_token(user)
        _, second = tokens.issue_access_token(user)
        assert first.jti != second.jti


class TestVerify:
    def test_empty_token(self, tokens):
        with pytest.raises(InvalidToken):
            tokens.verify("")

    def test_garbage_token(self, tokens):
        with pytest.raises(InvalidToken):
            tokens.verify("not.a.jwt")

    def test_wrong_secret(self, tokens, user, config, clock):
        other = TokenService(
            dataclasses.replace(config, JWT_SECRET="another-secret-5d2e8b1f9c4a7e3d6b0f"),
            MemoryRevocationStore(clock),
            clock,
        )
        token, _ = other.issue_access_token(user)
        with pytest.raises(InvalidToken, match="signature"):
            tokens.verify(token)

    def test_wrong_audience(self, tokens, user, config, clock):
        other = TokenService(
            dataclasses.replace(config, JWT_AUDIENCE="someone-else"),
            MemoryRevocationStore(clock),
            clock,
        )
        token, _ = other.issue_access_token(user)
        with pytest.raises(InvalidToken):
            tokens.verify(token)

    def test_expired_by_clock(self, tokens, user, clock, config):
        token, _ = tokens.issue_access_token(user)
        clock.advance(seconds=config.ACCESS_TOKEN_TTL.total_seconds())
        with pytest.raises(InvalidToken, match="expired"):
            tokens.verify(token)

    def test_expired_by_wall_time(self, tokens, user, config, clock):
        """A token issued days ago is rejected by PyJWT's own exp check."""
        past = clock() - timedelta(days=3)
        old = TokenService(config, MemoryRevocationStore(clock), lambda: past)
        token, _ = old.issue_access_token(user)
        with pytest.raises(InvalidToken, match="expired"):
            tokens.verify(token)

    def test_issued_in_the_future(self, tokens, user, config, clock):
        ahead = clock() + timedelta(minutes=10)
        skewed = TokenService(config, MemoryRevocationStore(clock), lambda: ahead)
        token, _ = skewed.issue_access_token(user)
        with pytest.raises(InvalidToken, match="future"):
            tokens.verify(token)

    def test_clock_ahead_of_wall_time(self, tokens, user, clock):
        """Verification follows the service clock, not the wall clock."""
        clock.advance(hours=2)
        token, _ = tokens.issue_access_token(user)
        assert tokens.verify(token).sub == "28"

    def test_unknown_token_type(self, tokens, config):
        token = jwt.encode(
            {
                "id": "28",
                "role": "user",
                "tokenType": "refresh",
                "jti": "x",
                "iat": 1,
                "exp": 32503680000,
                "iss": config.JWT_ISSUER,
                "aud": config.JWT_AUDIENCE,
            },
            config.JWT_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidToken, match="unknown token type"):
            tokens.verify(token)

    def test_missing_jti_rejected(self, tokens, config):
        token = jwt.encode(
            {
                "id": "28",
                "role": "user",
                "tokenType": "access",
                "iat": 1,
                "exp": 32503680000,
                "iss": config.JWT_ISSUER,
                "aud": config.JWT_AUDIENCE,
            },
            config.JWT_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidToken):
            tokens.verify(token)

    def test_verify_access_rejects_impersonation_token(self, access, actor_for):
        _, token = access.start_session(actor_for("25"), "28")
        with pytest.raises(InvalidToken, match="expected an access token"):
            access.tokens.verify_access(token)

    def test_verify_impersonation_rejects_access_token(self, tokens, user):
        token, _ = tokens.issue_access_token(user)
        with pytest.raises(InvalidToken, match="expected an impersonation token"):
            tokens.verify_impersonation(token)


class TestSecretRotation:
    def test_previous_secret_still_verifies(self, user, config, clock):
        old = TokenService(config, MemoryRevocationStore(clock), clock)
        token, _ = old.issue_access_token(user)

        rotated = TokenService(
            dataclasses.replace(
                config,
                JWT_SECRET="rotated-secret-8a1c4e7b2d9f6a3c0e5b",
                JWT_PREVIOUS_SECRET=config.JWT_SECRET,
            ),
            MemoryRevocationStore(clock),
            clock,
        )

        assert rotated.verify(token).id == "28"

    def test_new_tokens_use_current_secret(self, user, config, clock):
        rotated_config = dataclasses.replace(
            config,
            JWT_SECRET="rotated-secret-8a1c4e7b2d9f6a3c0e5b",
            JWT_PREVIOUS_SECRET=config.JWT_SECRET,
        )
        rotated = TokenService(rotated_config, MemoryRevocationStore(clock), clock)
        token, _ = rotated.issue_access_token(user)

        jwt.decode(
            token,
            rotated_config.JWT_SECRET,
            algorithms=["HS256"],
            audience=rotated_config.JWT_AUDIENCE,
        )


class TestRevocation:
    def test_revoked_token_rejected(self, tokens, user):
        token, _ = tokens.issue_access_token(user)
        tokens.revoke(token)
        with pytest.raises(InvalidToken, match="revoked"):
            tokens.verify(token)

    def test_revoking_one_token_leaves_others(self, tokens, user):
        first, _ = tokens.issue_access_token(user)
        second, _ = tokens.issue_access_token(user)
        tokens.revoke(first)
        assert tokens.verify(second).id == "28"

    def test_purge_drops_expired_entries(self, tokens, user, clock, config):
        token, _ = tokens.issue_access_token(user)
        tokens.revoke(token)

        assert tokens.purge_revocations() == 0
        clock.advance(seconds=config.ACCESS_TOKEN_TTL.total_seconds() + 1)
        assert tokens.purge_revocations() == 1


class TestConfig:
    def test_missing_secret_rejected(self, config, clock):
        with pytest.raises(ValueError):
            TokenService(
                dataclasses.replace(config, JWT_SECRET=""), MemoryRevocationStore(clock)
            )

    def test_impersonation_ttl_must_be_shorter(self):
        with pytest.raises(ValueError):
            Config(
                JWT_SECRET="x",
                ACCESS_TOKEN_TTL=timedelta(hours=1),
                IMPERSONATION_TOKEN_TTL=timedelta(hours=1),
            )

    def test_impersonation_ttl_capped_at_two_hours(self):
        with pytest.raises(ValueError):
            Config(
                JWT_SECRET="x",
                ACCESS_TOKEN_TTL=timedelta(hours=24),
                IMPERSONATION_TOKEN_TTL=timedelta(hours=3),
            )

    def test_env_defaults(self, monkeypatch):
        monkeypatch.delenv("ACCESS_TOKEN_TTL_SECONDS", raising=False)
        monkeypatch.setenv("JWT_SECRET", "from-env")
        monkeypatch.setenv("IMPERSONATION_TOKEN_TTL_SECONDS", "1800")
        cfg = Config()
        assert cfg.JWT_SECRET == "from-env"
        assert cfg.IMPERSONATION_TOKEN_TTL == timedelta(minutes=30)
        assert cfg.ACCESS_TOKEN_TTL == timedelta(hours=24)


class TestImpersonationClaims:
    def test_claims_mirror_session(self, access, actor_for):
        session, token = access.start_session(actor_for("25"), "26", reason="ticket 12")

        claims = access.tokens.verify(token)

        assert isinstance(claims, ImpersonationClaims)
        assert claims.subject_id == "26"
        assert claims.subject_role == Role.CSM
        assert claims.impersonator_id == "25"
        assert claims.impersonator_role == Role.ADMIN
        assert claims.session_id == session.session_id
        assert claims.id == "26"
        assert claims.role == Role.CSM
        assert claims.exp == session.expires_at
