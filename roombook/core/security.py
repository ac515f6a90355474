import hmac
import secrets

ACTION_TOKEN_BYTES = 32


def generate_action_token() -> str:
    return secrets.token_hex(ACTION_TOKEN_BYTES)


def secrets_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def verify_device_key(room_device_key: str | None, provided: str | None) -> bool:
    """Rooms without a configured key accept any tablet."""
    if not room_device_key:
        return True
    return secrets_match(provided, room_device_key)


def verify_bearer_secret(authorization: str | None, secret: str | None) -> bool:
    if not secret:
        return True
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return secrets_match(authorization.removeprefix("Bearer ").strip(), secret)
