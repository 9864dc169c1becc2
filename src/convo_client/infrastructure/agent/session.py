from __future__ import annotations

import jwt

from convo_client.application.dto.session import Session
from convo_client.application.exceptions import AuthenticationError


def session_from_token(token: str) -> Session:
    """Read the account identity carried by an access token.

    The signature is checked by the server on every request; the client only
    needs the claims.
    """
    if not token:
        raise AuthenticationError("No access token configured")
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise AuthenticationError(f"Malformed access token: {exc}") from exc

    did = payload.get("sub")
    if not did:
        raise AuthenticationError("Access token has no subject")
    return Session(
        did=str(did),
        access_token=token,
        handle=payload.get("handle"),
        email=payload.get("email"),
        email_confirmed=bool(payload.get("email_confirmed", False)),
    )
