import secrets
import string

PASSWORD_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits + "!@#$%^&*"
DEFAULT_PASSWORD_LENGTH = 24


def generate_secure_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    """Random secret drawn from the OS CSPRNG via ``secrets``."""
    if length < 1:
        raise ValueError("length must be >= 1")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
