"""
Domain event base types.

Every print event emitted by the BitPay contracts is a Clarity tuple whose
``event`` key names the variant. Each variant is a frozen pydantic model with
kebab-case aliases matching the tuple keys; a domain's variants form a closed
union discriminated on ``event``.
"""
import json
from typing import Annotated, Any, Union, get_args, get_origin

from pydantic import BaseModel, BeforeValidator, ConfigDict, TypeAdapter


def _kebab(name: str) -> str:
    return name.replace("_", "-")


def _to_uint(value: Any) -> int:
    """Accept 42, "42", "u42" (Clarity repr) or {"value": ...} wrappers."""
    if isinstance(value, dict) and "value" in value:
        value = value["value"]
    if isinstance(value, bool):
        raise ValueError("boolean is not a uint")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("u"):
            text = text[1:]
        if not text.isdigit():
            raise ValueError(f"not an unsigned integer: {value!r}")
        result = int(text)
    else:
        raise ValueError(f"not an unsigned integer: {value!r}")
    if result < 0:
        raise ValueError("uint must not be negative")
    return result


def _to_principal(value: Any) -> str:
    """Accept "SP..." / "'SP..." (Clarity repr) / "SP....contract" or {"value": ...}."""
    if isinstance(value, dict) and "value" in value:
        value = value["value"]
    if not isinstance(value, str):
        raise ValueError(f"not a principal: {value!r}")
    text = value.strip().lstrip("'")
    if not text:
        raise ValueError("empty principal")
    return text


def _to_text(value: Any) -> str:
    """Clarity string-ascii / string-utf8, possibly quoted or wrapped."""
    if isinstance(value, dict) and "value" in value:
        value = value["value"]
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ValueError(f"not a string: {value!r}")
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
    return text


Uint = Annotated[int, BeforeValidator(_to_uint)]
Principal = Annotated[str, BeforeValidator(_to_principal)]
Text = Annotated[str, BeforeValidator(_to_text)]


class DomainEvent(BaseModel):
    """Base for every decoded event; immutable once decoded."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=_kebab,
        extra="ignore",
    )

    event: str

    @classmethod
    def tag(cls) -> str:
        return cls.model_fields["event"].default

    def payload(self) -> dict[str, Any]:
        """Canonical JSON-safe form (kebab-case keys), as stored in the event journal."""
        return self.model_dump(mode="json", by_alias=True)


def union_members(union: Any) -> tuple[type[DomainEvent], ...]:
    """Unwrap Annotated[Union[...], Field(...)] into its variant classes."""
    if get_origin(union) is Annotated:
        union = get_args(union)[0]
    if get_origin(union) is Union:
        return tuple(get_args(union))
    return (union,)


def union_tags(union: Any) -> list[str]:
    return [member.tag() for member in union_members(union)]


def coerce_print_value(value: Any) -> dict[str, Any] | None:
    """
    Normalise a print event's value into a tuple dict.

    Chainhook delivers the decoded tuple as an object; older predicates
    deliver it as a JSON string.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if isinstance(value, dict):
        return value
    return None


def build_adapter(union: Any) -> TypeAdapter:
    return TypeAdapter(union)
