"""
Password Generator — Secure random passwords and an advisory strength score.

All randomness comes from the ``secrets`` module (OS CSPRNG).
"""
import re
import string
import secrets
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .exceptions import ValidationError

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

# Characters that look alike: l, 1, I, O, 0
SIMILAR_CHARS = frozenset("l1IO0")

_sysrandom = secrets.SystemRandom()


class PasswordOptions(BaseModel):
    """Password generator settings."""

    length: int = Field(default=16, ge=1, le=1024)
    lowercase: bool = True
    uppercase: bool = True
    digits: bool = True
    symbols: bool = True
    exclude_similar: bool = False

    def charsets(self) -> list[str]:
        """Enabled character classes, similar characters removed if asked."""
        enabled = [
            charset for flag, charset in (
                (self.lowercase, LOWERCASE),
                (self.uppercase, UPPERCASE),
                (self.digits, DIGITS),
                (self.symbols, SYMBOLS),
            ) if flag
        ]
        if self.exclude_similar:
            enabled = [
                ''.join(c for c in charset if c not in SIMILAR_CHARS)
                for charset in enabled
            ]
        return enabled


def generate_password(
    options: Optional[PasswordOptions] = None,
    **kwargs
) -> str:
    """Generate a random password.

    One character of every enabled class is always included; the rest is
    drawn uniformly from the union of enabled classes, then the whole
    sequence is shuffled.

    Args:
        options: Generator settings; keyword arguments build one if omitted.

    Raises:
        ValidationError: If no character class is enabled, the options are
            invalid, or length is shorter than the number of enabled classes.
    """
    if options is None:
        try:
            options = PasswordOptions(**kwargs)
        except PydanticValidationError as err:
            raise ValidationError.from_pydantic(
                err, message="Invalid password options"
            ) from None
    charsets = options.charsets()
    if not charsets:
        raise ValidationError(
            "At least one character type must be selected",
            [{"loc": (), "msg": "no character class enabled",
              "type": "value_error"}],
        )
    if options.length < len(charsets):
        raise ValidationError(
            "Password length is shorter than the number of character types",
            [{"loc": ("length",),
              "msg": f"length must be at least {len(charsets)}",
              "type": "greater_than_equal"}],
        )
    pool = ''.join(charsets)
    chars = [secrets.choice(charset) for charset in charsets]
    chars.extend(
        secrets.choice(pool) for _ in range(options.length - len(chars))
    )
    _sysrandom.shuffle(chars)
    return ''.join(chars)


_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")
_DIGIT_RE = re.compile(r"[0-9]")
_OTHER_RE = re.compile(r"[^a-zA-Z0-9]")


def password_strength(password: str) -> int:
    """Score a password from 0 to 100. Advisory only."""
    strength = 0
    if len(password) >= 8:
        strength += 20
    if len(password) >= 12:
        strength += 10
    if len(password) >= 16:
        strength += 10
    for pattern in (_LOWER_RE, _UPPER_RE, _DIGIT_RE, _OTHER_RE):
        if pattern.search(password):
            strength += 15
    return min(strength, 100)
