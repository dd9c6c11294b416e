"""
Session token issuing and verification.

Session tokens are HS256 JWTs signed with a symmetric key derived from the configured
token secret. The claim set is:

- accountId: identifier of the authenticated account
- handle: handle of the authenticated account
- iat: issue time, seconds since the epoch
- exp: expiry time, seconds since the epoch

Nothing is persisted. A token is valid when its signature checks out against the
server-held secret and its expiry has not passed.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException
from jwcrypto.jwt import JWTExpired, JWTMissingClaim

TOKEN_ALGORITHM = "HS256"


@dataclass(repr=False, eq=False)
class AuthToken:
    """
    Verified identity carried by a session token.

    Attributes:
        account_id: Identifier of the authenticated account
        handle: Handle of the authenticated account
        issued_at: When the token was issued
        expires_at: When the token stops being accepted
    """

    account_id: int
    handle: str
    issued_at: datetime
    expires_at: datetime


class AuthenticationException(Exception):
    """
    Exception raised for authentication failures.

    The message carries diagnostic detail for server-side logs only. Clients receive a
    generic error, with `missing` telling a 401 (no credentials) apart from a 403
    (credentials present but not acceptable).
    """

    def __init__(self, message: str, missing: bool = False) -> None:
        super().__init__(message)
        self.missing = missing

    @staticmethod
    def token_missing() -> "AuthenticationException":
        """No bearer token was presented."""
        return AuthenticationException(
            "error-auth-1000 Bearer token missing", missing=True
        )

    @staticmethod
    def token_invalid(msg: str = "") -> "AuthenticationException":
        """The token is malformed or its signature does not verify."""
        return AuthenticationException(f"error-auth-1001 Token invalid: {msg}")

    @staticmethod
    def token_expired() -> "AuthenticationException":
        """The token signature is valid but its expiry has passed."""
        return AuthenticationException("error-auth-1002 Token expired")

    @staticmethod
    def claims_missing(msg: str = "") -> "AuthenticationException":
        """The token verifies but lacks a required claim."""
        return AuthenticationException(f"error-auth-1003 Token claims missing: {msg}")

    @staticmethod
    def account_not_found() -> "AuthenticationException":
        """The token verifies but the account it names no longer exists."""
        return AuthenticationException("error-auth-1004 Account not found")


class TokenAuthority:
    """
    Signs and verifies session tokens with one server-held symmetric secret.

    Built once at startup from the loaded settings and shared through the application
    context, so the secret is read from configuration exactly once.
    """

    def __init__(self, secret: str, expiry: int = 3600, leeway: int = 0) -> None:
        if not secret:
            raise ValueError("token secret must not be blank")
        self._key = jwk.JWK.from_password(secret)
        self.expiry = expiry
        self.leeway = leeway

    def issue(
        self, account_id: int, handle: str, issued_at: Optional[datetime] = None
    ) -> str:
        """
        Sign a token asserting the given account identity.

        Args:
            account_id: Identifier of the authenticated account
            handle: Handle of the authenticated account
            issued_at: Issue time, defaults to now

        Returns:
            The compact serialized JWT
        """
        if issued_at is None:
            issued_at = datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(seconds=self.expiry)

        header = {"alg": TOKEN_ALGORITHM, "typ": "JWT"}
        claims = {
            "accountId": account_id,
            "handle": handle,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.JWT(header=header, claims=claims)
        token.make_signed_token(self._key)
        return token.serialize()

    def verify(self, serialized_token: str) -> AuthToken:
        """
        Validate a serialized token and return the identity it carries.

        Raises:
            AuthenticationException: If the token is malformed, tampered with, expired,
                or missing the accountId/handle claims
        """
        token = jwt.JWT(
            algs=[TOKEN_ALGORITHM], check_claims={"exp": None}, expected_type="JWS"
        )
        token.leeway = self.leeway
        try:
            token.deserialize(serialized_token, key=self._key)
        except JWTExpired:
            raise AuthenticationException.token_expired()
        except JWTMissingClaim as e:
            raise AuthenticationException.claims_missing(str(e))
        except (JWException, ValueError, TypeError) as e:
            raise AuthenticationException.token_invalid(type(e).__name__)

        claims: Dict[str, Any] = json.loads(token.claims)

        account_id = claims.get("accountId", None)
        if not isinstance(account_id, int) or isinstance(account_id, bool):
            raise AuthenticationException.claims_missing("accountId")

        handle = claims.get("handle", None)
        if not isinstance(handle, str) or not handle:
            raise AuthenticationException.claims_missing("handle")

        issued_at = claims.get("iat", None)
        if not isinstance(issued_at, (int, float)):
            raise AuthenticationException.claims_missing("iat")

        return AuthToken(
            account_id=account_id,
            handle=handle,
            issued_at=datetime.fromtimestamp(issued_at, timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], timezone.utc),
        )
