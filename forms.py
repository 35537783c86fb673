"""
Declarative HTML forms on top of pydantic models.

A form's fields are the fields of a pydantic model: the field title is the
label shown to the operator, the alias is the HTML input name, and widget
details (select options, help text, readonly, initial checkbox state) live
in json_schema_extra. Per-field and cross-field checks are ordinary pydantic
validators that raise form_error(message).

Values are stripped of surrounding whitespace (passwords are kept as typed)
and blank strings are treated as missing, so a required field left empty fails
with '"<Label>" is required'.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import PydanticCustomError, PydanticUndefined

FORM_ERROR = "form_error"

Options = Union[Sequence[tuple[str, str]], Callable[[], Sequence[tuple[str, str]]]]


class ValidationError(Exception):
    def __init__(self, messages: Iterable[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


def form_error(message: str) -> PydanticCustomError:
    """Error to raise from a validator; the message is shown to the operator as-is."""
    return PydanticCustomError(FORM_ERROR, "{message}", {"message": message})


class FormSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def input_field(
    label: str,
    *,
    required: bool = False,
    default: Any = None,
    widget: str = "text",
    name: Optional[str] = None,
    options: Optional[Options] = None,
    help: Optional[str] = None,
    readonly: bool = False,
    initial: Any = None,
):
    """Declare a form input. name is the HTML input name when it differs from the field name."""
    extra = {
        "widget": widget,
        "options": options,
        "help": help,
        "readonly": readonly,
        "initial": initial,
    }
    return Field(
        ... if required else default,
        title=label,
        alias=name,
        json_schema_extra=extra,
    )


@dataclass(frozen=True)
class Group:
    name: str
    fields: tuple[str, ...]
    instructions: Optional[str] = None


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "on", "yes")
    return bool(value)


class Form:
    def __init__(
        self,
        schema: type[FormSchema],
        *,
        title: str,
        action: Optional[str] = None,
        submit: str = "Save",
        instructions: Optional[str] = None,
        groups: Optional[Sequence[Group]] = None,
        method: str = "post",
    ):
        self.schema = schema
        self.title = title
        self.action = action
        self.submit = submit
        self.instructions = instructions
        self.method = method
        self.groups = tuple(groups) if groups else (Group(name="main", fields=tuple(schema.model_fields)),)

        self._labels: dict[str, str] = {}
        self._widgets: dict[str, str] = {}
        for field_name, info in schema.model_fields.items():
            label = info.title or field_name
            widget = (info.json_schema_extra or {}).get("widget", "text")
            for key in (field_name, info.alias):
                if key:
                    self._labels[key] = label
                    self._widgets[key] = widget

    def input_name(self, field_name: str) -> str:
        info = self.schema.model_fields[field_name]
        return info.alias or field_name

    def validate(self, data: Mapping[str, Any], context: Optional[dict] = None) -> FormSchema:
        cleaned = {}
        for key, value in data.items():
            if isinstance(value, str) and self._widgets.get(key) != "password":
                value = value.strip()
            if value == "":
                continue
            cleaned[key] = value
        try:
            return self.schema.model_validate(cleaned, context=context)
        except pydantic.ValidationError as e:
            raise ValidationError(self._messages(e)) from e

    def _messages(self, exc: pydantic.ValidationError) -> list[str]:
        messages = []
        for err in exc.errors():
            loc = err["loc"][0] if err["loc"] else None
            label = self._labels.get(loc, loc) if loc is not None else None
            if err["type"] == "missing":
                messages.append(f'"{label}" is required')
            elif err["type"] == FORM_ERROR or label is None:
                messages.append(err["msg"])
            else:
                messages.append(f'"{label}": {err["msg"]}')
        return messages

    def _input(self, field_name: str, values: Optional[Mapping[str, Any]]) -> dict:
        info = self.schema.model_fields[field_name]
        extra = info.json_schema_extra or {}
        name = self.input_name(field_name)
        widget = extra.get("widget", "text")

        default = None if info.default is PydanticUndefined else info.default
        if extra.get("initial") is not None:
            default = extra["initial"]

        options = extra.get("options")
        if callable(options):
            options = options()

        entry = {
            "name": name,
            "label": info.title or field_name,
            "widget": widget,
            "help": extra.get("help"),
            "readonly": extra.get("readonly", False),
            "required": info.is_required(),
            "options": [{"key": key, "label": label} for key, label in (options or ())],
        }
        if widget == "checkbox":
            entry["checked"] = _truthy(default) if values is None else _truthy(values.get(name))
            entry["value"] = "1"
        elif widget == "password":
            entry["value"] = ""
        elif values is None:
            entry["value"] = "" if default is None else str(default)
        else:
            value = values.get(name)
            entry["value"] = "" if value is None else str(value)
        return entry

    def serialize(
        self,
        values: Optional[Mapping[str, Any]] = None,
        errors: Sequence[str] = (),
        success: str = "",
    ) -> dict:
        """Template context for templates/form.html."""
        return {
            "title": self.title,
            "action": self.action,
            "method": self.method,
            "submit": self.submit,
            "instructions": self.instructions,
            "errors": list(errors),
            "success": success,
            "groups": [
                {
                    "name": group.name,
                    "instructions": group.instructions,
                    "inputs": [self._input(field_name, values) for field_name in group.fields],
                }
                for group in self.groups
            ],
        }
