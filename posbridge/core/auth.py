"""
Session/auth gate.

Issues and verifies signed, expiring session tokens for the POS terminals.
Tokens are Fernet tokens keyed from the configured secret, so they are
tamper-proof and carry their own issue time for expiry checks.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

from .errors import AuthError, BadRequestError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 7 * 24 * 3600


def _fernet_key(secret: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode('utf-8')).digest())


def public_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "role": user.get("role"),
        "username": user.get("username"),
    }


class AuthGate:
    """Login against the configured staff list and session token checks."""

    def __init__(self, secret: str, users: List[Dict[str, Any]],
                 token_ttl: int = DEFAULT_TOKEN_TTL, cookie_name: str = "sid"):
        self._cipher = Fernet(_fernet_key(secret))
        self.users = users or []
        self.token_ttl = int(token_ttl)
        self.cookie_name = cookie_name

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AuthGate":
        auth_config = config.get('auth', {})
        return cls(
            secret=auth_config.get('secret', ''),
            users=auth_config.get('users', []),
            token_ttl=auth_config.get('token_ttl_seconds', DEFAULT_TOKEN_TTL),
            cookie_name=auth_config.get('cookie_name', 'sid'),
        )

    def login(self, username: Any, password: Any) -> Tuple[Dict[str, Any], str]:
        """
        Check credentials and issue a session token.

        Returns:
            tuple: (public user dict, token)

        Raises:
            BadRequestError: If username or password is missing
            AuthError: If the credentials do not match a configured user
        """
        if not username or not password:
            raise BadRequestError("Username and password are required")

        normalized = str(username).strip().lower()
        user = next(
            (u for u in self.users if str(u.get("username", "")).lower() == normalized),
            None,
        )

        if user is None or not hmac.compare_digest(str(password).encode('utf-8'),
                                                str(user.get("password", "")).encode('utf-8')):
            logger.warning(f"Invalid credentials for username={normalized}")
            raise AuthError("Invalid username or password")

        logger.info(f"Login ok for {user.get('username')}")
        return public_user(user), self.issue_token(user)

    def issue_token(self, user: Mapping[str, Any]) -> str:
        claims = {
            "uid": user.get("id"),
            "name": user.get("name"),
            "role": user.get("role"),
            "username": user.get("username"),
        }
        return self._cipher.encrypt(json.dumps(claims).encode('utf-8')).decode('ascii')

    def verify(self, token: Optional[str]) -> Dict[str, Any]:
        """
        Verify a session token.

        Returns:
            dict: Token claims (uid, name, role, username)

        Raises:
            AuthError: If the token is missing, forged or expired
        """
        if not token:
            raise AuthError()
        try:
            raw = self._cipher.decrypt(token.encode('ascii'), ttl=self.token_ttl)
            return json.loads(raw)
        except (InvalidToken, UnicodeEncodeError, ValueError) as e:
            logger.warning(f"Token error: {type(e).__name__}")
            raise AuthError()

    def read_token(self, headers: Mapping[str, str], cookies: Mapping[str, str],
                   query: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Token from 'Authorization: Bearer', the session cookie, or ?token=."""
        header = headers.get("authorization") or ""
        if header.startswith("Bearer "):
            return header[7:].strip() or None
        token = cookies.get(self.cookie_name)
        if token:
            return token
        if query:
            return query.get("token") or None
        return None

    @staticmethod
    def claims_to_user(claims: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": claims.get("uid"),
            "name": claims.get("name"),
            "role": claims.get("role"),
            "username": claims.get("username"),
        }
