"""
auth/tokens.py -- Identity token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id as the "sub" claim plus "iat" and "exp". The same user may
       hold any number of valid tokens at once; there is no session table.

  Verification returns a TokenCheck instead of raising. Callers get an
       explicit accept/reject on every call and cannot forget an except
       clause. The failure reason (malformed / bad_signature / expired) is for
       server logs only -- the HTTP layer answers every failure the same way.

  Expiry is checked here rather than by python-jose. jose treats a token as
       valid during the whole second named by "exp"; we treat the expiration
       instant itself as expired, and we need an injectable clock for tests.

  No revocation: a token stays valid until "exp". Logout is the client
       discarding its token.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenCheck, TokenFailure
from core.config import get_settings

logger = logging.getLogger("connect.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_SECRET_KEY = _settings.secret_key


def create_access_token(
    user_id: int,
    expire_seconds: int = 0,
    *,
    secret_key: str | None = None,
    now: datetime | None = None,
) -> str:
    """Encode a signed JWT for user_id.

    Args:
        user_id:        Numeric user ID stored in the DB.
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds (24 hours).
        secret_key:     Signing key override. Defaults to SECRET_KEY.
        now:            Issuance instant override, for tests.
    """
    issued = now or datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, secret_key or _SECRET_KEY, algorithm=_ALGORITHM)


def decode_access_token(
    token: str,
    *,
    secret_key: str | None = None,
    now: datetime | None = None,
) -> TokenCheck:
    """Verify a JWT and return the subject user id, or the reason it was rejected.

    Order of checks:
      1. Structure -- three base64 segments with JSON header and claims.
      2. Signature -- HS256 with the server key; other algorithms are refused.
      3. Claims -- integer "sub" and numeric "exp" must be present.
      4. Expiry -- now >= exp is expired.
    """
    try:
        jwt.get_unverified_claims(token)
    except (JWTError, AttributeError, TypeError):
        return TokenCheck(failure=TokenFailure.malformed)

    try:
        claims = jwt.decode(
            token,
            secret_key or _SECRET_KEY,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return TokenCheck(failure=TokenFailure.bad_signature)

    try:
        user_id = int(claims["sub"])
        expires_at = float(claims["exp"])
    except (KeyError, TypeError, ValueError):
        return TokenCheck(failure=TokenFailure.malformed)

    current = (now or datetime.now(timezone.utc)).timestamp()
    if current >= expires_at:
        return TokenCheck(failure=TokenFailure.expired)
    return TokenCheck(user_id=user_id)
