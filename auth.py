from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def issue_session_token(user_id: int, token_id: str) -> str:
    return _serializer().dumps({"u": user_id, "t": token_id})


def read_session_token(
    token: str, max_age_hours: Optional[int] = None
) -> Optional[tuple[int, str]]:
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None

    user_id = data.get("u")
    token_id = data.get("t")
    if not isinstance(user_id, int) or not isinstance(token_id, str):
        return None
    return user_id, token_id
