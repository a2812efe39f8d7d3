"""
Reference tokens - the (typename, key values) pair handed to an owning subgraph.

A token carries exactly the key fields declared for its type, plus any fields
required by ``@requires`` on the fields being resolved. Its ``identity`` only
covers the typename and the key values, so two objects pointing at the same
entity always deduplicate to one token.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .errors import ReferenceTokenError

TYPENAME = "__typename"


@dataclass(frozen=True)
class ReferenceToken:
    """Serializable reference to one entity instance."""
    typename: str
    key: tuple[tuple[str, Any], ...]
    extra: tuple[tuple[str, Any], ...] = field(default=(), compare=False)

    @classmethod
    def from_object(
        cls,
        obj: Mapping[str, Any],
        typename: str,
        key_fields: Iterable[str],
        extra_fields: Iterable[str] = (),
    ) -> "ReferenceToken":
        """
        Build a token from a partial result object.

        The object's own ``__typename`` wins over ``typename`` so that
        concrete types behind an abstract field are referenced correctly.

        Raises:
            ReferenceTokenError: If a key field is absent or null
        """
        actual_type = obj.get(TYPENAME) or typename
        key = []
        for name in key_fields:
            value = obj.get(name)
            if value is None:
                raise ReferenceTokenError(f"{actual_type} object is missing key field '{name}'")
            key.append((name, value))
        extra = tuple((name, obj.get(name)) for name in extra_fields if name not in dict(key))
        return cls(typename=actual_type, key=tuple(key), extra=extra)

    @classmethod
    def from_representation(
        cls,
        representation: Mapping[str, Any],
        key_fields: Iterable[str],
    ) -> "ReferenceToken":
        """Rebuild a token on the subgraph side from an ``_Any`` representation."""
        typename = representation.get(TYPENAME)
        if not typename:
            raise ReferenceTokenError("Representation is missing __typename")
        keys = tuple(key_fields)
        extra = [name for name in representation if name != TYPENAME and name not in keys]
        return cls.from_object(representation, typename, keys, extra)

    @property
    def identity(self) -> str:
        """Canonical, hashable form of typename + key values."""
        # ID values compare as strings
        return json.dumps([self.typename, [[name, str(value)] for name, value in self.key]])

    @property
    def key_values(self) -> dict[str, Any]:
        return dict(self.key)

    def to_representation(self) -> dict[str, Any]:
        """Serialize for the ``_entities(representations:)`` argument."""
        representation: dict[str, Any] = {TYPENAME: self.typename}
        representation.update(self.key)
        representation.update(self.extra)
        return representation
