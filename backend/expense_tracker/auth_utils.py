import secrets


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def verify_bearer_secret(authorization: str | None, secret: str) -> bool:
    """Check an ``Authorization: Bearer ...`` header against a shared secret.

    An empty configured secret never matches, so an unconfigured deployment
    rejects every call instead of accepting an empty token.
    """
    if not secret:
        return False
    token = bearer_token(authorization)
    if token is None:
        return False
    return secrets.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
