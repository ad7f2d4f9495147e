"""Short tokens an operator can quote back in an email reply."""

import random
import re

TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
TOKEN_LENGTH = 8
TOKEN_PATTERN = re.compile(rf"^[A-Z0-9]{{{TOKEN_LENGTH}}}$")


def generate_token() -> str:
    """Generate an 8-character uppercase alphanumeric token.

    Not cryptographically secure and not checked for uniqueness; the registry
    checks the session map before accepting one.
    """
    return "".join(random.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def is_valid_token(value: str) -> bool:
    """Check that a string has the token format."""
    return bool(TOKEN_PATTERN.match(value))
