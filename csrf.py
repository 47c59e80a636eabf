import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(account_id: int = 0, max_age_hours: int = 2) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"a": account_id, "ts": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def validate_csrf_token(token: str, account_id: int = 0) -> bool:
    if not token:
        return False
    serializer = _serializer()
    try:
        data = serializer.loads(token)
    except BadSignature:
        return False

    if data.get("a") != account_id:
        return False

    return int(time.time()) <= data.get("exp", 0)
