"""
idgen_sdk.tier1_runtime.validate
─────────────────────────────────
Input validation via Pydantic v2. Raises the SDK ValidationError (not raw
Pydantic errors) so callers handle one error taxonomy.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

T = TypeVar("T", bound=BaseModel)


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model. Instances of the model are
    returned unchanged.

    Usage:
        layout = validate_input(BitLayout, {"sequence_bits": 12})
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        from idgen_sdk.tier0_core.errors import ValidationError

        fields = {
            ".".join(str(loc) for loc in err["loc"]) or "__root__": err["msg"]
            for err in exc.errors()
        }
        raise ValidationError(
            user_message=f"Invalid {model.__name__}.",
            fields=fields,
        ) from exc


__all__ = ["validate_input"]
