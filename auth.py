import time
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def issue_session_token(user_id: int) -> str:
    serializer = _serializer()
    return serializer.dumps({"u": user_id, "ts": int(time.time())})


def read_session_token(token: str) -> Optional[int]:
    settings = get_settings()
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=settings.session_max_age_hours * 3600)
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or user_id <= 0:
        return None
    return user_id


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    user_id = read_session_token(token.strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
