# app/services/form_validation.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.errors import BadRequestError


@dataclass(frozen=True)
class FormField:
    id: str
    label: str
    type: str = "text"
    required: bool = False
    options: List[str] = field(default_factory=list)


def parse_form_schema(raw: Optional[Sequence[Mapping[str, Any]]]) -> List[FormField]:
    """
    Accepts the stored list of {id, label, required, type, options} dicts,
    or a {"fields": [...]} wrapper. Entries without an id are ignored.
    """
    if not raw:
        return []
    if isinstance(raw, Mapping):
        raw = raw.get("fields") or []

    fields: List[FormField] = []
    for item in raw:
        if not isinstance(item, Mapping) or not item.get("id"):
            continue
        fields.append(
            FormField(
                id=str(item["id"]),
                label=str(item.get("label") or item["id"]),
                type=str(item.get("type") or "text"),
                required=bool(item.get("required", False)),
                options=list(item.get("options") or []),
            )
        )
    return fields


def _is_blank(f: FormField, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    # a required checkbox must be ticked
    if f.type == "checkbox" and value is False:
        return True
    return False


def validate_required_answers(
    fields: Sequence[FormField],
    answers: Optional[Mapping[str, Any]],
) -> None:
    """
    Only presence of required answers is checked here; type-specific
    formatting belongs to whoever owns the form schema.
    """
    answers = answers or {}
    missing = [f.label for f in fields if f.required and _is_blank(f, answers.get(f.id))]
    if missing:
        raise BadRequestError(
            f"Missing required answers: {', '.join(missing)}",
            details={"missing": missing},
        )


def clean_answers(fields: Sequence[FormField], answers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Keep only answers for declared fields; without a schema they pass through."""
    if not answers:
        return {}
    if not fields:
        return dict(answers)
    known = {f.id for f in fields}
    return {k: v for k, v in answers.items() if k in known}
