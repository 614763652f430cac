"""Cache key schema for Cachewire.

Key format: [{prefix}:]tenant:{tenant_id}:{logical_key}

Where:
- prefix: optional namespace (e.g. "api", "dashboard")
- tenant_id: owning tenant; omitted for unscoped keys
- logical_key: the caller's key, may itself contain ":"

Tag indices live in their own namespace so that tenant pattern deletes
never touch them:

    _tag:[{prefix}:]tenant:{tenant_id}:{tag}
"""

from __future__ import annotations

from dataclasses import dataclass

DELIMITER = ":"
TENANT_SEGMENT = "tenant"
TAG_NAMESPACE = "_tag"

# Tenant ids and prefixes may not contain the delimiter or SCAN glob syntax
RESERVED_CHARS = frozenset(":*?[]\\")


def validate_segment(value: str, name: str = "tenant_id") -> str:
    """Check that a tenant id or prefix cannot leave its namespace.

    Raises:
        ValueError: If the value is empty or contains a reserved character.
    """
    if not value:
        raise ValueError(f"{name} must not be empty")
    reserved = RESERVED_CHARS.intersection(value)
    if reserved:
        chars = "".join(sorted(reserved))
        raise ValueError(f"{name} {value!r} contains reserved characters {chars!r}")
    return value


@dataclass(frozen=True)
class ParsedKey:
    """Components recovered from a physical key."""

    prefix: str | None
    tenant_id: str | None
    key: str
    is_tag_index: bool = False


class CacheKeys:
    """Cache key generator following consistent naming convention."""

    @classmethod
    def build(cls, key: str, tenant_id: str | None = None, prefix: str | None = None) -> str:
        """Physical key for a logical key in a tenant namespace.

        Raises:
            ValueError: If the tenant id or prefix could collide with
                another namespace.
        """
        parts = []
        if prefix:
            validate_segment(prefix, "prefix")
            if prefix in (TENANT_SEGMENT, TAG_NAMESPACE):
                raise ValueError(f"prefix {prefix!r} is reserved")
            parts.append(prefix)
        if tenant_id is not None:
            validate_segment(tenant_id)
            parts.append(f"{TENANT_SEGMENT}{DELIMITER}{tenant_id}")
        parts.append(key)
        return DELIMITER.join(parts)

    @classmethod
    def tag_index(cls, tag: str, tenant_id: str | None = None, prefix: str | None = None) -> str:
        """Key of the set holding every physical key tagged with ``tag``."""
        return f"{TAG_NAMESPACE}{DELIMITER}{cls.build(tag, tenant_id, prefix)}"

    @classmethod
    def tenant_pattern(
        cls, pattern: str, tenant_id: str | None = None, prefix: str | None = None
    ) -> str:
        """Glob restricted to one tenant's namespace.

        Use with SCAN + DEL for scoped invalidation.
        """
        return cls.build(pattern, tenant_id, prefix)

    @classmethod
    def parse(cls, physical_key: str) -> ParsedKey | None:
        """Parse a physical key into its components.

        Keys without a tenant segment come back with the whole key as the
        logical key. Returns None for an empty key.
        """
        if not physical_key:
            return None

        is_tag_index = False
        rest = physical_key
        if rest.startswith(TAG_NAMESPACE + DELIMITER):
            is_tag_index = True
            rest = rest[len(TAG_NAMESPACE) + 1 :]

        parts = rest.split(DELIMITER)
        for i in range(len(parts) - 2):
            if parts[i] == TENANT_SEGMENT:
                prefix = DELIMITER.join(parts[:i]) or None
                return ParsedKey(
                    prefix=prefix,
                    tenant_id=parts[i + 1],
                    key=DELIMITER.join(parts[i + 2 :]),
                    is_tag_index=is_tag_index,
                )

        return ParsedKey(prefix=None, tenant_id=None, key=rest, is_tag_index=is_tag_index)
