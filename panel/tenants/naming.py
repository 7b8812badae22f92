"""
Derivation of tenant identifiers from user input.

Everything here is a pure function of its arguments: the same tenant name
always yields the same slug, stack name and database identifiers.
"""

import hashlib
import re
from typing import NamedTuple

from django.core.exceptions import ValidationError

STACK_PREFIX = "mautic-"
DB_PREFIX = "mautic_"
DB_USER_SUFFIX = "_user"

SLUG_MAX_LENGTH = 100
# Docker service/network names end up as DNS labels inside the swarm.
STACK_NAME_MAX_LENGTH = 63
# MySQL 8 identifier limits.
DB_NAME_MAX_LENGTH = 64
DB_USER_MAX_LENGTH = 32

DOMAIN_MAX_LENGTH = 253

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_STACK_RE = re.compile(r"[^a-z0-9-]")
_DB_RE = re.compile(r"[^a-z0-9_]")

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_DOMAIN_RE = re.compile(rf"{_LABEL}(?:\.{_LABEL})*", re.ASCII)
_VERSION_RE = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")


class TenantNames(NamedTuple):
    slug: str
    stack_name: str
    db_name: str
    db_user: str


def _cap(value: str, max_length: int, separator: str) -> str:
    """Truncate to max_length, appending a digest of the full value.

    Two long inputs sharing a prefix still map to distinct identifiers.
    """
    if len(value) <= max_length:
        return value
    digest = hashlib.sha1(value.encode()).hexdigest()[:8]
    head = value[: max_length - len(digest) - 1].rstrip(separator)
    return f"{head}{separator}{digest}"


def generate_slug(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-")


def sanitize_stack_name(value: str) -> str:
    sanitized = _STACK_RE.sub("-", value.lower())
    return _cap(sanitized, STACK_NAME_MAX_LENGTH, "-")


def sanitize_db_identifier(value: str, max_length: int = DB_NAME_MAX_LENGTH) -> str:
    sanitized = _DB_RE.sub("_", value.lower())
    return _cap(sanitized, max_length, "_")


def derive_names(name: str) -> TenantNames:
    slug = generate_slug(name)
    if not slug:
        raise ValidationError("Name must contain at least one letter or digit.")
    # Lower-casing can lengthen text ("İ" -> "i̇"), so check the slug itself.
    if len(slug) > SLUG_MAX_LENGTH:
        raise ValidationError(f"Name produces a slug longer than {SLUG_MAX_LENGTH} characters.")
    return TenantNames(
        slug=slug,
        stack_name=sanitize_stack_name(f"{STACK_PREFIX}{slug}"),
        db_name=sanitize_db_identifier(f"{DB_PREFIX}{slug}", DB_NAME_MAX_LENGTH),
        db_user=sanitize_db_identifier(f"{DB_PREFIX}{slug}{DB_USER_SUFFIX}", DB_USER_MAX_LENGTH),
    )


def is_valid_domain(domain: str) -> bool:
    if not domain or len(domain) > DOMAIN_MAX_LENGTH:
        return False
    return _DOMAIN_RE.fullmatch(domain) is not None


def validate_domain(domain: str) -> None:
    if not is_valid_domain(domain):
        raise ValidationError(
            "Invalid domain format. Use only letters, numbers, hyphens, and dots."
        )


def validate_version(version: str) -> None:
    if not version or _VERSION_RE.fullmatch(version) is None:
        raise ValidationError(f"Invalid Mautic version: {version!r}")
