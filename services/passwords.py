"""
Password hashing and password policy.
"""
import re
import bcrypt

from .exceptions import ValidationError

MIN_LENGTH = 8
SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
COMMON_PASSWORDS = {
    "password", "password123", "123456", "12345678", "qwerty", "admin",
    "welcome", "welcome123", "letmein", "abc123", "monkey", "1234567890",
}


def get_password_hash(password: str) -> str:
    """Hash password with bcrypt (72 byte limit applies)."""
    password_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not plain_password or not hashed_password:
        return False
    password_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str) -> None:
    """
    Enforce the password policy.

    Raises:
        ValidationError: with the first rule the password breaks
    """
    if not password or len(password) < MIN_LENGTH:
        raise ValidationError(f"La contraseña debe tener al menos {MIN_LENGTH} caracteres.", "password")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("La contraseña debe contener al menos una letra mayúscula.", "password")
    if not re.search(r"[a-z]", password):
        raise ValidationError("La contraseña debe contener al menos una letra minúscula.", "password")
    if not re.search(r"[0-9]", password):
        raise ValidationError("La contraseña debe contener al menos un número.", "password")
    if not any(ch in SPECIAL_CHARS for ch in password):
        raise ValidationError("La contraseña debe contener al menos un carácter especial.", "password")
    if password.lower() in COMMON_PASSWORDS:
        raise ValidationError(
            "Esta contraseña es demasiado común. Por favor, elige una más segura.", "password"
        )
