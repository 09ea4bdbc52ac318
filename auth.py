from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="owner-token")


def generate_owner_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def owner_from_token(token: str, max_age_hours: Optional[int] = None) -> Optional[int]:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except BadData:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    return user_id
