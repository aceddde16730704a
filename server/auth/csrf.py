import secrets
from fastapi import Request, HTTPException, status

STATE_SESSION_KEY = "oauth_state"


def generate_state(request: Request) -> str:
    """Fresh OAuth `state` for every login attempt, remembered in the session."""
    token = secrets.token_urlsafe(32)
    request.session[STATE_SESSION_KEY] = token
    return token


def validate_state(request: Request, token: str | None) -> None:
    expected = request.session.pop(STATE_SESSION_KEY, None)
    if not expected or not token or not secrets.compare_digest(expected, token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid login state",
        )
