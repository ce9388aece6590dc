"""Password generation for instance credentials."""

import secrets

# Ambiguous glyphs (0/O, 1/l/I) are left out so passwords can be read aloud.
PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"


def generate_password(length: int = 16) -> str:
    """Generate a random password suitable for requirepass."""
    if length <= 0:
        raise ValueError("Length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
