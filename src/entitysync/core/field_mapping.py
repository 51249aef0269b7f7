"""Typed field mapping rules between the remote shape and the canonical schema.

Each entity type declares how remote field names and enumerations translate
into canonical local field names and values. Rules are resolved at the
adapter boundary so the engine only ever sees canonical payloads.

Example:
    rules = MappingRules(
        entity_type="lead",
        fields=[
            FieldRule("email", "EmailAddress", transform="lower"),
            FieldRule("status", "LeadStatus", value_map={"TS": "tour_scheduled"}),
        ],
    )
    remote_id, fields = rules.to_canonical({"id": "r-1", "EmailAddress": "A@B.io"})
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from entitysync.core.errors import ValidationError


def _to_digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": _to_bool,
    "lower": lambda v: str(v).strip().lower(),
    "strip": lambda v: str(v).strip(),
    "digits": _to_digits,
}


@dataclass
class FieldRule:
    """Mapping of one canonical field to one remote field.

    Attributes:
        local_name: Canonical (local) field name.
        remote_name: Field name in the remote system's native payload.
        transform: Optional named transform applied to inbound values.
        value_map: Remote value -> canonical value (enumerations).
    """

    local_name: str
    remote_name: str
    transform: str | None = None
    value_map: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.transform is not None and self.transform not in TRANSFORMS:
            raise ValueError(f"Unknown transform: {self.transform}")

    def inbound(self, value: Any) -> Any:
        """Translate a remote value into the canonical encoding."""
        if value is None:
            return None
        if isinstance(value, str | int | float | bool) and str(value) in self.value_map:
            value = self.value_map[str(value)]
        if self.transform:
            try:
                value = TRANSFORMS[self.transform](value)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Field {self.remote_name!r}: cannot apply {self.transform}: {e}"
                ) from e
        return value

    def outbound(self, value: Any) -> Any:
        """Translate a canonical value back into the remote encoding."""
        if value is None or not self.value_map:
            return value
        for remote_value, local_value in self.value_map.items():
            if local_value == value:
                return remote_value
        return value


@dataclass
class MappingRules:
    """Field mapping for one entity type.

    Attributes:
        entity_type: Entity type these rules apply to.
        fields: Per-field rules.
        id_field: Remote payload key holding the remote identifier.
        updated_at_field: Remote payload key holding the change timestamp.
        passthrough: Keep fields that have no rule under their remote name.
    """

    entity_type: str
    fields: list[FieldRule] = field(default_factory=list)
    id_field: str = "id"
    updated_at_field: str = "updated_at"
    passthrough: bool = True

    def _by_remote(self) -> dict[str, FieldRule]:
        return {rule.remote_name: rule for rule in self.fields}

    def _by_local(self) -> dict[str, FieldRule]:
        return {rule.local_name: rule for rule in self.fields}

    def to_canonical(self, payload: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
        """Translate a native remote payload into (remote_id, canonical fields).

        Raises:
            ValidationError: If the payload is not an object or a transform fails.
        """
        if not isinstance(payload, dict):
            raise ValidationError(f"{self.entity_type} payload must be an object")

        by_remote = self._by_remote()
        remote_id = payload.get(self.id_field)
        fields: dict[str, Any] = {}

        for key, value in payload.items():
            if key in (self.id_field, self.updated_at_field):
                continue
            rule = by_remote.get(key)
            if rule is not None:
                fields[rule.local_name] = rule.inbound(value)
            elif self.passthrough:
                fields[key] = value

        return (str(remote_id) if remote_id is not None else None), fields

    def to_remote(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Translate canonical fields into the remote system's native shape."""
        by_local = self._by_local()
        result: dict[str, Any] = {}
        for name, value in fields.items():
            rule = by_local.get(name)
            if rule is not None:
                result[rule.remote_name] = rule.outbound(value)
            elif self.passthrough:
                result[name] = value
        return result

    @classmethod
    def from_dict(cls, entity_type: str, data: dict[str, Any]) -> MappingRules:
        """Build rules from a JSON config section."""
        rules = [
            FieldRule(
                local_name=local_name,
                remote_name=spec.get("remote", local_name),
                transform=spec.get("transform"),
                value_map=dict(spec.get("values", {})),
            )
            for local_name, spec in data.get("fields", {}).items()
        ]
        return cls(
            entity_type=entity_type,
            fields=rules,
            id_field=data.get("id_field", "id"),
            updated_at_field=data.get("updated_at_field", "updated_at"),
            passthrough=data.get("passthrough", True),
        )
