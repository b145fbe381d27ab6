"""Persistent single-slot credential cache.

Stores the current ERP credential in one JSON file, by default
``~/.local/share/tokenbroker/credential.json`` (XDG) or the
platform-equivalent directory. Files are written atomically via
:func:`~tokenbroker.config.atomic_write` with ``0o600`` permissions so that
the access key is never world-readable, even momentarily.

There is exactly one "current" credential: saving overwrites the previous
record. Reading never raises -- a missing, unreadable or corrupt file is
treated as "no credential cached" so the broker can always fall back to a
fresh acquisition.

See Also:
    :class:`~tokenbroker.auth.broker.CredentialBroker` -- decides when the
    cached record is reused.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from tokenbroker.config import atomic_write, credential_path
from tokenbroker.exceptions import StoreError
from tokenbroker.models import BrokerSettings

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """Attach the local timezone to naive datetimes."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def mask_secret(secret: str, visible: int = 6) -> str:
    """Return a log-safe rendering of *secret*: a short prefix plus its length.

    Example::

        >>> mask_secret("XYZ123ABC456DEF789")
        'XYZ123... (18 chars)'
    """
    if len(secret) <= visible:
        return f"*** ({len(secret)} chars)"
    return f"{secret[:visible]}... ({len(secret)} chars)"


class Credential(BaseModel):
    """A bearer credential issued by the ERP's temporary-access-key page.

    ``expires_at`` is authoritative for every reuse decision. The
    ``valid_from`` / ``valid_to`` strings are kept exactly as the page
    reported them, for diagnostics only.

    Attributes:
        secret: The opaque access key sent as ``Authorization: Bearer``.
        issued_at: When this broker obtained the credential.
        expires_at: After this instant the credential is never reused.
        subject: User identifier (an e-mail address) reported by the page.
        valid_from: Reported validity start, ``YYYY-MM-DD HH:MM``.
        valid_to: Reported validity end, ``YYYY-MM-DD HH:MM``.
        group: Numeric group tag reported by the page.
        raw_source_text: The unparsed scrape, kept for auditing.
    """

    secret: str = Field(min_length=1, repr=False, description="Bearer access key")
    issued_at: datetime = Field(description="When the credential was obtained")
    expires_at: datetime = Field(description="When the credential stops being reused")
    subject: Optional[str] = Field(default=None, description="Reported user identifier")
    valid_from: Optional[str] = Field(default=None, description="Reported validity start")
    valid_to: Optional[str] = Field(default=None, description="Reported validity end")
    group: Optional[str] = Field(default=None, description="Reported group tag")
    raw_source_text: Optional[str] = Field(
        default=None, repr=False, description="Original unparsed page text"
    )

    @field_validator("secret")
    @classmethod
    def _secret_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("secret must not be blank")
        return value

    @field_validator("issued_at", "expires_at")
    @classmethod
    def _timezone_aware(cls, value: datetime) -> datetime:
        return _aware(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once *now* (default: current time) reaches ``expires_at``."""
        current = _aware(now) if now is not None else datetime.now(timezone.utc)
        return current >= self.expires_at

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """Time left until expiry; negative when already expired."""
        current = _aware(now) if now is not None else datetime.now(timezone.utc)
        return self.expires_at - current

    @property
    def masked_secret(self) -> str:
        """The secret rendered by :func:`mask_secret`."""
        return mask_secret(self.secret)


class CredentialStore:
    """Read/write the single cached credential record.

    All writes are atomic: content is written to a temporary file in the
    same directory, fsynced, then renamed into place. A concurrent
    :meth:`load` therefore sees either the old record or the new one.

    Args:
        path: The credential file location.

    Example::

        store = CredentialStore(tmp_path / "credential.json")
        store.save(credential)
        assert store.load().secret == credential.secret
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> CredentialStore:
        """Build a store at the credential file configured in *settings*."""
        return cls(credential_path(settings))

    @property
    def path(self) -> Path:
        """The filesystem path of the credential file."""
        return self._path

    def save(self, credential: Credential) -> None:
        """Persist *credential* atomically with ``0o600`` permissions.

        Raises:
            StoreError: If the file cannot be written (permissions, disk full, etc.).
        """
        text = json.dumps(credential.model_dump(mode="json"), indent=2) + "\n"
        try:
            atomic_write(self._path, text, mode=0o600)
        except OSError as exc:
            raise StoreError(f"Cannot write credential file {self._path}: {exc}") from exc
        logger.debug(
            "Saved credential %s to %s", credential.masked_secret, self._path
        )

    def load(self) -> Optional[Credential]:
        """Load the cached credential.

        Returns:
            The deserialised :class:`Credential`, or ``None`` if the file does
            not exist or cannot be read or parsed.
        """
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return Credential.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            # Validation messages may echo field values, so only the type is logged.
            logger.warning(
                "Ignoring unreadable credential file %s (%s)",
                self._path,
                type(exc).__name__,
            )
            return None

    def clear(self) -> None:
        """Delete the credential file. A no-op when it is already gone.

        Raises:
            StoreError: If an existing file cannot be removed.
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreError(f"Cannot remove credential file {self._path}: {exc}") from exc
        logger.debug("Cleared credential file %s", self._path)
