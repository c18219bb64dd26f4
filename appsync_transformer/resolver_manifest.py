from typing import List, Mapping

from .types import FunctionSlot
from .user_defined_slots import SLOT_KEY_PARTS, parse_slot_key


def list_generated_slots(resolvers: Mapping[str, str]) -> List[FunctionSlot]:
    """Return the pipeline-step resolvers as FunctionSlots, in generation order.

    Only 6-part keys are pipeline steps; top-level resolver templates such as
    ``Query.getTodo.req.vtl`` are skipped.
    """
    slots = []
    for name, resolver_code in resolvers.items():
        if len(name.split(".")) != SLOT_KEY_PARTS:
            continue
        key = parse_slot_key(name)
        slots.append(
            FunctionSlot(
                type_name=key.type_name,
                field_name=key.field_name,
                slot_name=key.slot_name,
                slot_index=key.slot_index,
                template_type=key.template_type,
                resolver_code=resolver_code,
            )
        )
    return slots
