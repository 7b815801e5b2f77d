import hashlib
import hmac
from typing import Any

from itsdangerous import BadData, URLSafeTimedSerializer

from printquota.core.config import get_settings

TOKEN_MAX_AGE_SECONDS = 7 * 24 * 3600


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="printquota-access",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(payload: dict[str, Any]) -> str:
    """Sign {"student_id", "role"}; issued by the auth service in production."""
    return get_token_serializer().dumps(payload)


def load_access_token(token: str, max_age_seconds: int = TOKEN_MAX_AGE_SECONDS) -> dict[str, Any] | None:
    serializer = get_token_serializer()
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadData:  # bad signature, expired or malformed
        return None


def verify_gateway_authorization(header_value: str | None, api_key: str) -> bool:
    """SePay sends `Authorization: Apikey <key>`."""
    if not header_value or not api_key:
        return False
    expected = f"Apikey {api_key}"
    return hmac.compare_digest(header_value.strip().encode("utf-8"), expected.encode("utf-8"))
