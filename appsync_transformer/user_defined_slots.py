"""
User-defined resolver slot parsing.

Slot overrides are keyed ``Type.field.slot.index.templateType.vtl``, e.g.
``Mutation.createTodo.preUpdate.1.req.vtl``. Keys are parsed strictly into a
``SlotKey``; anything else is a ``MalformedSlotKeyError``.
"""

from typing import Dict, Iterable, Mapping, NamedTuple

from .exceptions import MalformedSlotKeyError
from .types import FunctionSlot

SLOT_KEY_PARTS = 6
TEMPLATE_TYPES = ("req", "res")
TEMPLATE_EXTENSION = "vtl"


class SlotKey(NamedTuple):
    type_name: str
    field_name: str
    slot_name: str
    slot_index: int
    template_type: str

    @property
    def resolver_key(self) -> str:
        return ".".join(
            [
                self.type_name,
                self.field_name,
                self.slot_name,
                str(self.slot_index),
                self.template_type,
                TEMPLATE_EXTENSION,
            ]
        )

    @property
    def counterpart(self) -> "SlotKey":
        """The key of the other template of the same pipeline function."""
        other = "res" if self.template_type == "req" else "req"
        return self._replace(template_type=other)


def parse_slot_key(key: str) -> SlotKey:
    """Parse a 6-part slot key.

    Raises:
        MalformedSlotKeyError: If the key does not have exactly 6 non-empty
            parts, the index is not a non-negative integer, or the template
            type is unknown
    """
    parts = key.split(".")
    if len(parts) != SLOT_KEY_PARTS:
        raise MalformedSlotKeyError(
            key, f"expected {SLOT_KEY_PARTS} dot-separated parts, found {len(parts)}"
        )
    type_name, field_name, slot_name, slot_index, template_type, extension = parts
    if not all(parts):
        raise MalformedSlotKeyError(key, "empty key component")
    if not slot_index.isdigit() or not slot_index.isascii():
        raise MalformedSlotKeyError(key, f"slot index '{slot_index}' is not a non-negative integer")
    if template_type not in TEMPLATE_TYPES:
        raise MalformedSlotKeyError(
            key, f"template type must be one of {', '.join(TEMPLATE_TYPES)}, found '{template_type}'"
        )
    if extension != TEMPLATE_EXTENSION:
        raise MalformedSlotKeyError(key, f"expected a .{TEMPLATE_EXTENSION} template")
    return SlotKey(type_name, field_name, slot_name, int(slot_index, 10), template_type)


def parse_user_defined_slots(slots: Mapping[str, str]) -> Dict[SlotKey, str]:
    """Parse slot overrides into SlotKey form, preserving input order."""
    parsed: Dict[SlotKey, str] = {}
    for key, code in slots.items():
        slot_key = parse_slot_key(key)
        if slot_key in parsed:
            raise MalformedSlotKeyError(
                key, f"duplicates slot {slot_key.resolver_key}"
            )
        parsed[slot_key] = code
    return parsed


def function_slots_to_mapping(slots: Iterable[FunctionSlot]) -> Dict[str, str]:
    """Convert FunctionSlot overrides to the keyed mapping the parser accepts."""
    mapping: Dict[str, str] = {}
    for slot in slots:
        if isinstance(slot.slot_index, bool) or not isinstance(slot.slot_index, int) or slot.slot_index < 0:
            raise MalformedSlotKeyError(
                f"{slot.type_name}.{slot.field_name}.{slot.slot_name}",
                f"slot index {slot.slot_index!r} is not a non-negative integer",
            )
        key = SlotKey(
            slot.type_name, slot.field_name, slot.slot_name, slot.slot_index, slot.template_type
        ).resolver_key
        mapping[key] = slot.resolver_code
    return mapping
