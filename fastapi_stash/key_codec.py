# fastapi_stash/key_codec.py

"""
Storage key construction shared by all backends.

A key such as ``users.42.profile`` inside namespace ``app`` is stored as
``<prefix>::app::users::42::profile::``. A trailing ``*`` turns a key into a
children reference: ``users.*`` matches ``users`` and everything below it,
``users..*`` matches only what is below it.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from fastapi_stash.exceptions import InvalidKeyError

DEFAULT_PREFIX = "fastapi-stash"
DEFAULT_SEPARATOR = "::"


@dataclass(frozen=True)
class ParsedKey:
    """A key with its wildcard modifiers stripped."""
    normal: Optional[str]
    matches_children: bool = False
    matches_self: bool = True


@dataclass(frozen=True)
class InspectedKey(ParsedKey):
    """A parsed key together with its built storage key."""
    key: str = ""


class KeyCodec:
    """
    Builds backend storage keys from (namespace, key) pairs.
    """

    def __init__(
        self,
        prefix: Optional[str] = None,
        separator: str = DEFAULT_SEPARATOR,
    ) -> None:
        if not separator:
            raise ValueError("Key separator must be a non-empty string")

        self.prefix = prefix or DEFAULT_PREFIX
        self.separator = separator

    def parse_key(self, key: Optional[str]) -> ParsedKey:
        """
        Strip the children wildcard from a key.

        ``a.b.*`` matches ``a.b`` and its children, ``a.b..*`` only the
        children. A bare ``*`` refers to the whole namespace.

        :param key: Key, optionally ending in ``.*`` or ``..*``.
        :return: The normalized key and what it matches.
        """
        if key is None or not key.endswith("*"):
            return ParsedKey(normal=key)

        # the separator before the wildcard
        key = key[:-1]
        if key.endswith("."):
            key = key[:-1]

        matches_self = True

        if key.endswith("."):
            matches_self = False
            key = key[:-1]

        return ParsedKey(normal=key or None, matches_children=True, matches_self=matches_self)

    def build_key(self, namespace: str, key: Optional[str]) -> str:
        """
        Build the storage key for a normalized key.

        A ``None`` key yields the namespace root, usable as a scan prefix.
        """
        sep = self.separator
        output = f"{self.prefix}{sep}{namespace}{sep}"

        if key is not None:
            output += key.replace(".", sep) + sep

        return output

    def create_key(self, namespace: str, key: Optional[str]) -> str:
        """
        Build a storage key for direct value access.

        :raises InvalidKeyError: If the key carries a children wildcard.
        """
        parsed = self.parse_key(key)

        if parsed.matches_children:
            raise InvalidKeyError("Invalid cache key", key)

        return self.build_key(namespace, parsed.normal)

    def inspect_key(self, namespace: str, key: Optional[str]) -> InspectedKey:
        parsed = self.parse_key(key)
        return InspectedKey(
            normal=parsed.normal,
            matches_children=parsed.matches_children,
            matches_self=parsed.matches_self,
            key=self.build_key(namespace, parsed.normal),
        )

    def create_pattern(self, namespace: str, key: Optional[str]) -> re.Pattern[str]:
        """
        Compile a pattern matching every storage key a (possibly wildcard)
        key refers to. A ``None`` key matches the whole namespace.
        """
        inspected = self.inspect_key(namespace, key)
        pattern = "^" + re.escape(inspected.key)

        if key is None or (inspected.matches_self and inspected.matches_children):
            pattern += ".*"
        elif inspected.matches_children:
            pattern += ".+"

        return re.compile(pattern + "$", re.DOTALL)

    def create_lock_key(self, namespace: str, key: str) -> str:
        """Build the fixed-length key a regeneration lock is stored under."""
        sep = self.separator
        normal = key.replace(".", sep)
        digest = hashlib.md5(f"{namespace}{sep}{normal}".encode("utf-8")).hexdigest()
        return f"{self.prefix}!lock{sep}{digest}"


__all__ = [
    "DEFAULT_PREFIX",
    "DEFAULT_SEPARATOR",
    "InspectedKey",
    "KeyCodec",
    "ParsedKey",
]
