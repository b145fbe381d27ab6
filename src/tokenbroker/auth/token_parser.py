"""Extract a credential from the text scraped off the access-key page.

The page renders a block of ``Label : value`` lines wrapped in loose HTML
(``<br>`` line breaks, ``&nbsp;`` padding, stray tags) in no guaranteed
order. Parsing therefore runs a set of independent, order-insensitive
:class:`FieldRule` objects over normalised text. A rule that finds nothing
leaves its field empty without affecting the others.

The access key is the only mandatory field. When its labelled line is
missing or implausibly short, the parser falls back to the longest run of
at least :data:`FALLBACK_MIN_LENGTH` token characters anywhere in the text.
If that also fails, :class:`~tokenbroker.exceptions.TokenParseError` is
raised; a credential without a secret is never constructed.

Example::

    result = parse_token_text(
        "Kullanıcı : a@b.com<br>Geçici Erişim Anahtarı : XYZ123ABC456<br>"
        "Geçerlilik Bitiş : 2025-07-25 22:43",
        default_lifetime_minutes=60,
    )
    result.credential.subject      # 'a@b.com'
    result.credential.expires_at   # 2025-07-25 22:43, local time
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from tokenbroker.auth.credential_store import Credential, mask_secret
from tokenbroker.exceptions import TokenParseError

logger = logging.getLogger(__name__)

MIN_LABELLED_SECRET_LENGTH = 10
"""Labelled secrets shorter than this are treated as a failed match."""

FALLBACK_MIN_LENGTH = 100
"""Minimum length of an unlabelled character run accepted as the secret."""

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"

_SEP = r"[ \t]*:[ \t]*"
_TIMESTAMP = r"(\d{4}-\d{2}-\d{2}[ \t]+\d{2}:\d{2})"
_BREAK_TAG = re.compile(r"<\s*br\s*/?\s*>", re.IGNORECASE)
_BLOCK_END_TAG = re.compile(r"</\s*(?:p|div|li|tr)\s*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_NBSP = re.compile(r"&nbsp;?|&#160;|\xa0", re.IGNORECASE)
_TOKEN_RUN = re.compile(r"[A-Za-z0-9_-]{%d,}" % FALLBACK_MIN_LENGTH)


@dataclass(frozen=True)
class FieldRule:
    """One labelled field: a name and a pattern whose first group is the value."""

    name: str
    pattern: re.Pattern[str]

    def extract(self, text: str) -> Optional[str]:
        match = self.pattern.search(text)
        if match is None:
            return None
        return match.group(1).strip()


def _rule(name: str, labels: str, value: str) -> FieldRule:
    return FieldRule(
        name=name,
        pattern=re.compile(r"(?<!\w)(?:" + labels + r")" + _SEP + value, re.IGNORECASE),
    )


SUBJECT_RULE = _rule(
    "subject",
    r"Kullan[ıi]c[ıi](?:[ \t]+Ad[ıi])?|Username|User|E-?posta|E-?mail",
    r"([\w.+-]+@[\w-]+(?:\.[\w-]+)+)",
)
SECRET_RULE = _rule(
    "secret",
    r"Ge[çc]ici[ \t]+Eri[şs]im[ \t]+Anahtar[ıi]|Eri[şs]im[ \t]+Anahtar[ıi]|Access[ \t]+Key|Token",
    r"([A-Za-z0-9_-]+)",
)
VALID_FROM_RULE = _rule(
    "valid_from",
    r"Ge[çc]erlilik[ \t]+Ba[şs]lang[ıi][çc](?:[ \t]+Tarihi)?|Valid[ \t]+From",
    _TIMESTAMP,
)
VALID_TO_RULE = _rule(
    "valid_to",
    r"Ge[çc]erlilik[ \t]+Biti[şs](?:[ \t]+Tarihi)?|Valid[ \t]+(?:To|Until)",
    _TIMESTAMP,
)
GROUP_RULE = _rule("group", r"Grup|Group", r"(\d+)")

OPTIONAL_RULES: tuple[FieldRule, ...] = (
    SUBJECT_RULE,
    VALID_FROM_RULE,
    VALID_TO_RULE,
    GROUP_RULE,
)


@dataclass
class TokenParseResult:
    """Outcome of :func:`parse_token_text`.

    Attributes:
        credential: The constructed credential (always has a secret).
        missing_fields: Optional fields no rule could extract.
        used_fallback: ``True`` when the secret came from the unlabelled
            longest-run heuristic rather than its labelled line.
    """

    credential: Credential
    missing_fields: list[str] = field(default_factory=list)
    used_fallback: bool = False


def normalize_token_text(raw: str) -> str:
    """Turn HTML-polluted page text into plain ``Label : value`` lines."""
    text = _BREAK_TAG.sub("\n", raw)
    text = _BLOCK_END_TAG.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text)
    text = _NBSP.sub(" ", text)
    return text.strip()


def _longest_token_run(text: str) -> Optional[str]:
    runs = _TOKEN_RUN.findall(text)
    if not runs:
        return None
    return max(runs, key=len)


def extract_secret(text: str) -> tuple[str, bool]:
    """Return ``(secret, used_fallback)`` from normalised *text*.

    Raises:
        TokenParseError: If neither the labelled line nor the fallback
            heuristic yields a secret.
    """
    labelled = SECRET_RULE.extract(text)
    if labelled is not None and len(labelled) >= MIN_LABELLED_SECRET_LENGTH:
        return labelled, False

    fallback = _longest_token_run(text)
    if fallback is not None:
        logger.warning(
            "Access key label not found; using the longest token-like run %s",
            mask_secret(fallback),
        )
        return fallback, True

    if labelled is not None:
        raise TokenParseError(
            f"Access key on the page is too short ({len(labelled)} chars, "
            f"expected at least {MIN_LABELLED_SECRET_LENGTH}) and no "
            f"{FALLBACK_MIN_LENGTH}+ character token was found"
        )
    raise TokenParseError(
        "No access key found in the page text: no labelled access key line "
        f"and no {FALLBACK_MIN_LENGTH}+ character token"
    )


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD HH:MM`` as local wall-clock time, or return ``None``."""
    try:
        naive = datetime.strptime(" ".join(value.split()), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return naive.astimezone()


def parse_token_text(
    raw: str,
    default_lifetime_minutes: int = 60,
    now: Optional[datetime] = None,
) -> TokenParseResult:
    """Build a :class:`~tokenbroker.auth.credential_store.Credential` from scraped text.

    Args:
        raw: Text content of the token element, possibly containing HTML.
        default_lifetime_minutes: Lifetime applied when the page reports no
            parseable validity end.
        now: Issue time; defaults to the current time.

    Returns:
        A :class:`TokenParseResult` with the credential and the list of
        optional fields that were not found.

    Raises:
        TokenParseError: If no access key can be extracted.
    """
    if not raw or not raw.strip():
        raise TokenParseError("Token text is empty")

    issued_at = now if now is not None else datetime.now(timezone.utc)
    text = normalize_token_text(raw)
    secret, used_fallback = extract_secret(text)

    values: dict[str, Optional[str]] = {}
    missing: list[str] = []
    for rule in OPTIONAL_RULES:
        value = rule.extract(text)
        values[rule.name] = value
        if value is None:
            missing.append(rule.name)

    expires_at: Optional[datetime] = None
    if values["valid_to"] is not None:
        expires_at = parse_timestamp(values["valid_to"])
        if expires_at is None:
            logger.warning(
                "Unparseable validity end %r; using the default lifetime",
                values["valid_to"],
            )
    if expires_at is None:
        expires_at = issued_at + timedelta(minutes=default_lifetime_minutes)

    credential = Credential(
        secret=secret,
        issued_at=issued_at,
        expires_at=expires_at,
        subject=values["subject"],
        valid_from=values["valid_from"],
        valid_to=values["valid_to"],
        group=values["group"],
        raw_source_text=raw,
    )
    if missing:
        logger.debug("Token text had no %s", ", ".join(missing))
    return TokenParseResult(
        credential=credential, missing_fields=missing, used_fallback=used_fallback
    )
