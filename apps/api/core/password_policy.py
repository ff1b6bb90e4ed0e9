"""
Password Policy Validation

Applied to the password chosen when an invitation is accepted, before the
identity provider is asked to create the account.

Requirements:
- Minimum 8 characters
- Maximum 72 bytes once UTF-8 encoded (bcrypt limit)
- At least 1 uppercase letter
- At least 1 lowercase letter
- At least 1 digit
- At least 1 special character
- Not in common password blocklist
"""
import re
from typing import Tuple, List

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72

# Common weak passwords to block (case-insensitive)
COMMON_PASSWORDS = {
    "password", "password1", "password123", "123456", "12345678", "1234567890",
    "qwerty", "qwerty123", "abc123", "letmein", "welcome", "monkey", "dragon",
    "master", "login", "admin", "admin123", "root", "toor", "pass", "test",
    "guest", "iloveyou", "princess", "sunshine", "football", "baseball",
    "passw0rd", "p@ssw0rd", "p@ssword", "trustno1", "starwars", "whatever",
    "password1!", "password123!", "welcome1!", "admin123!", "qwerty123!",
    "centrocultural", "centrocultural1!", "hsk12345!",
}

_SPECIAL_CHARS = re.compile(r'[!@#$%^&*()_+\-=\[\]{};\':"\\|,.<>\/?`~]')


def validate_password(password: str) -> Tuple[bool, List[str]]:
    """
    Validate password against security policy.

    Args:
        password: The password to validate

    Returns:
        Tuple of (is_valid, list_of_error_messages)
    """
    if not isinstance(password, str):
        return False, ["Password must be a string"]

    errors = []

    # Length checks
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must not exceed {MAX_PASSWORD_LENGTH} bytes (bcrypt limit)")

    # Complexity checks
    if not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        errors.append("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        errors.append("Password must contain at least one digit")

    if not _SPECIAL_CHARS.search(password):
        errors.append("Password must contain at least one special character (!@#$%^&*...)")

    # Common password check (case-insensitive)
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common, please choose a stronger password")

    is_valid = len(errors) == 0
    return is_valid, errors


def get_password_requirements_text() -> str:
    """Return human-readable password requirements."""
    return """Password requirements:
• 8-72 bytes (accented letters count as two)
• At least one uppercase letter (A-Z)
• At least one lowercase letter (a-z)
• At least one digit (0-9)
• At least one special character (!@#$%^&*...)
• Must not be a commonly used password"""
