"""
Base model for stored documents.
Records are plain pydantic structs: snake_case in Python, camelCase on the wire, JSON in storage.
Behavior that operates on them lives in the domain modules, never on the record types.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.common.errors import ValidationError

DocumentT = TypeVar("DocumentT", bound="DocumentModel")


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict keyed by Python field names, used for storage."""

        return self.model_dump(mode="json")

    def to_wire(self, *, exclude: Any | None = None) -> dict[str, Any]:
        """JSON-safe dict keyed by the camelCase wire names."""

        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


def parse_document(model_cls: type[DocumentT], data: Any) -> DocumentT:
    """Validate input into `model_cls`, raising the domain ValidationError on failure."""

    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        details = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError(f"Invalid {model_cls.__name__} data.", details=details) from exc
