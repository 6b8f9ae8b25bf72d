"""Key-type classification from a System B attribute name.

System B is the operational system; its column naming encodes relational
structure (owner, address and opaque-identifier references), so the
classification signal is taken from the B-side attribute name.
"""

from __future__ import annotations

from recon.models import KeyType

# Checked in order, first match wins.
_KEY_TYPE_RULES: tuple[tuple[frozenset[str], KeyType], ...] = (
    (frozenset({"owner_id", "owner_type_id"}), KeyType.OWNER),
    (frozenset({"address_id"}), KeyType.ADDRESS),
    (frozenset({"did"}), KeyType.OPAQUE_ID),
)


def classify_key_type(attribute_name: object) -> KeyType:
    """Return the key type for an attribute name. Case-insensitive and total."""
    name = "" if attribute_name is None else str(attribute_name).strip().lower()
    for names, key_type in _KEY_TYPE_RULES:
        if name in names:
            return key_type
    return KeyType.GENERIC
