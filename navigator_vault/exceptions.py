"""Navigator Vault exceptions."""
from typing import Any, Optional


class VaultError(Exception):
    """Base class for all vault errors."""


class DecodeError(VaultError, ValueError):
    """Envelope or salt cannot be decoded (bad base64, wrong length)."""


class AuthenticationError(VaultError):
    """AEAD tag verification failed: tampered data, wrong key or corruption."""


class NotFoundError(VaultError):
    """Item does not exist or belongs to another owner.

    Both cases share the same message so callers cannot tell them apart.
    """

    def __init__(self, message: str = "Item not found") -> None:
        super().__init__(message)


class SessionClosedError(VaultError):
    """Vault session was closed or has expired."""


class ValidationError(VaultError, ValueError):
    """Payload failed structural validation.

    ``errors`` holds field-level details as dicts with ``loc``, ``msg``
    and ``type`` keys.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[list[dict[str, Any]]] = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(
        cls,
        err: Any,
        message: str = "Invalid input",
        prefix: tuple = ()
    ) -> "ValidationError":
        """Build from a ``pydantic.ValidationError``."""
        errors = [
            {
                "loc": prefix + tuple(e.get("loc", ())),
                "msg": e.get("msg", ""),
                "type": e.get("type", ""),
            }
            for e in err.errors()
        ]
        return cls(message, errors)
