"""
Field processors.

Synchronous processors that read and write document fields: set, remove,
rename, append, convert, lowercase, uppercase, trim and multiply.
"""

import copy
import logging
from abc import abstractmethod
from typing import Any, Dict, List, Optional

from ..core.document import IngestDocument
from ..core.exceptions import FieldNotFound, InvalidConfigValue, ProcessorFailure
from ..core.processor import Parameters, Processor
from ..pipelines.registry import (
    read_bool,
    read_float,
    read_object,
    read_optional_str,
    read_str,
    read_str_or_list,
)

logger = logging.getLogger(__name__)


class SetProcessor(Processor):
    """Sets a field to a constant or to the value of another field."""

    TYPE = "set"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 value: Any = None, copy_from: Optional[str] = None,
                 override: bool = True, ignore_empty_value: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.value = value
        self.copy_from = copy_from
        self.override = override
        self.ignore_empty_value = ignore_empty_value

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if not self.override and document.has_field(self.field):
            return document
        if self.copy_from is not None:
            value = copy.deepcopy(document.get_field_value(self.copy_from))
        else:
            value = copy.deepcopy(self.value)
        if self.ignore_empty_value and (value is None or value == ""):
            return document
        document.set_field_value(self.field, value)
        return document


def create_set(registry, tag, description, config: Dict[str, Any], parameters: Parameters) -> SetProcessor:
    field = read_str(SetProcessor.TYPE, tag, config, "field")
    copy_from = read_optional_str(SetProcessor.TYPE, tag, config, "copy_from")
    if copy_from is not None:
        if "value" in config:
            raise InvalidConfigValue("cannot set both [copy_from] and [value]", SetProcessor.TYPE, tag, "copy_from")
        value = None
    else:
        value = read_object(SetProcessor.TYPE, tag, config, "value")
    override = read_bool(SetProcessor.TYPE, tag, config, "override", True)
    ignore_empty_value = read_bool(SetProcessor.TYPE, tag, config, "ignore_empty_value", False)
    return SetProcessor(tag, description, field, value, copy_from, override, ignore_empty_value)


class RemoveProcessor(Processor):
    """Removes one or more fields."""

    TYPE = "remove"

    def __init__(self, tag: Optional[str], description: Optional[str], fields: List[str],
                 ignore_missing: bool = False):
        super().__init__(tag, description)
        self.fields = fields
        self.ignore_missing = ignore_missing

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        for field in self.fields:
            try:
                document.remove_field(field)
            except FieldNotFound:
                if not self.ignore_missing:
                    raise
        return document


def create_remove(registry, tag, description, config, parameters) -> RemoveProcessor:
    fields = read_str_or_list(RemoveProcessor.TYPE, tag, config, "field")
    ignore_missing = read_bool(RemoveProcessor.TYPE, tag, config, "ignore_missing", False)
    return RemoveProcessor(tag, description, fields, ignore_missing)


class RenameProcessor(Processor):
    """Moves a field to a new path. The target must not exist unless ``override`` is set."""

    TYPE = "rename"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 target_field: str, ignore_missing: bool = False, override: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.target_field = target_field
        self.ignore_missing = ignore_missing
        self.override = override

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if not document.has_field(self.field):
            if self.ignore_missing:
                return document
            raise FieldNotFound(self.field, "field doesn't exist")
        if document.has_field(self.target_field) and not self.override:
            raise ProcessorFailure(f"field [{self.target_field}] already exists")
        value = document.get_field_value(self.field)
        document.remove_field(self.field)
        try:
            document.set_field_value(self.target_field, value)
        except Exception:
            document.set_field_value(self.field, value)
            raise
        return document


def create_rename(registry, tag, description, config, parameters) -> RenameProcessor:
    t = RenameProcessor.TYPE
    return RenameProcessor(
        tag, description,
        read_str(t, tag, config, "field"),
        read_str(t, tag, config, "target_field"),
        read_bool(t, tag, config, "ignore_missing", False),
        read_bool(t, tag, config, "override", False),
    )


class AppendProcessor(Processor):
    """Appends one or more values to a field, turning a scalar into a list."""

    TYPE = "append"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 value: Any, allow_duplicates: bool = True):
        super().__init__(tag, description)
        self.field = field
        self.value = value
        self.allow_duplicates = allow_duplicates

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        values = copy.deepcopy(self.value if isinstance(self.value, list) else [self.value])
        if not self.allow_duplicates:
            existing = document.get_field_value(self.field, [])
            existing = existing if isinstance(existing, list) else [existing]
            values = [v for v in values if v not in existing]
            if not values:
                return document
        document.append_field_value(self.field, values)
        return document


def create_append(registry, tag, description, config, parameters) -> AppendProcessor:
    t = AppendProcessor.TYPE
    return AppendProcessor(
        tag, description,
        read_str(t, tag, config, "field"),
        read_object(t, tag, config, "value"),
        read_bool(t, tag, config, "allow_duplicates", True),
    )


def _to_integer(value: Any) -> int:
    if isinstance(value, str) and value.strip().lower().lstrip("-").startswith("0x"):
        return int(value.strip(), 16)
    return int(value)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"[{value}] is not a boolean value, cannot convert to boolean")


def _to_auto(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    for convert in (int, float, _to_boolean):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


_CONVERTERS = {
    "integer": _to_integer,
    "long": _to_integer,
    "float": float,
    "double": float,
    "string": str,
    "boolean": _to_boolean,
    "auto": _to_auto,
}


class ConvertProcessor(Processor):
    """Converts a field (or every element of a list field) to another type."""

    TYPE = "convert"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 target_type: str, target_field: Optional[str] = None, ignore_missing: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.target_type = target_type
        self.target_field = target_field or field
        self.ignore_missing = ignore_missing
        self._convert = _CONVERTERS[target_type]

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        value = document.get_field_value(self.field, None)
        if value is None:
            if self.ignore_missing:
                return document
            raise FieldNotFound(self.field, "cannot be converted")
        try:
            if isinstance(value, list):
                converted = [self._convert(item) for item in value]
            else:
                converted = self._convert(value)
        except (TypeError, ValueError) as e:
            raise ProcessorFailure(f"unable to convert [{value}] to {self.target_type}: {e}") from e
        document.set_field_value(self.target_field, converted)
        return document


def create_convert(registry, tag, description, config, parameters) -> ConvertProcessor:
    t = ConvertProcessor.TYPE
    field = read_str(t, tag, config, "field")
    target_type = read_str(t, tag, config, "type")
    if target_type not in _CONVERTERS:
        raise InvalidConfigValue(f"type [{target_type}] not supported, cannot convert field",
                                 t, tag, "type")
    return ConvertProcessor(
        tag, description, field, target_type,
        read_optional_str(t, tag, config, "target_field"),
        read_bool(t, tag, config, "ignore_missing", False),
    )


class AbstractStringProcessor(Processor):
    """Base class for processors that map a string field (or list of strings) to a new value."""

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 target_field: Optional[str] = None, ignore_missing: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.target_field = target_field or field
        self.ignore_missing = ignore_missing

    @abstractmethod
    def transform(self, value: str) -> Any:
        pass

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        value = document.get_field_value(self.field, None)
        if value is None:
            if self.ignore_missing:
                return document
            raise FieldNotFound(self.field, f"cannot be processed by [{self.type}]")
        if isinstance(value, list):
            if not all(isinstance(item, str) for item in value):
                raise ProcessorFailure(f"field [{self.field}] contains a value that is not a string")
            result = [self.transform(item) for item in value]
        elif isinstance(value, str):
            result = self.transform(value)
        else:
            raise ProcessorFailure(f"field [{self.field}] of type [{type(value).__name__}] "
                                   f"cannot be cast to [str]")
        document.set_field_value(self.target_field, result)
        return document


class LowercaseProcessor(AbstractStringProcessor):
    TYPE = "lowercase"

    def transform(self, value: str) -> str:
        return value.lower()


class UppercaseProcessor(AbstractStringProcessor):
    TYPE = "uppercase"

    def transform(self, value: str) -> str:
        return value.upper()


class TrimProcessor(AbstractStringProcessor):
    TYPE = "trim"

    def transform(self, value: str) -> str:
        return value.strip()


def string_factory(processor_class):
    """Factory for AbstractStringProcessor subclasses."""
    def create(registry, tag, description, config, parameters):
        t = processor_class.TYPE
        return processor_class(
            tag, description,
            read_str(t, tag, config, "field"),
            read_optional_str(t, tag, config, "target_field"),
            read_bool(t, tag, config, "ignore_missing", False),
        )
    return create


class MultiplyProcessor(Processor):
    """Multiplies a numeric field by a constant factor."""

    TYPE = "multiply"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 factor: float, target_field: Optional[str] = None, ignore_missing: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.factor = int(factor) if float(factor).is_integer() else factor
        self.target_field = target_field or field
        self.ignore_missing = ignore_missing

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if not document.has_field(self.field):
            if self.ignore_missing:
                return document
            raise FieldNotFound(self.field)
        value = document.get_field_value(self.field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ProcessorFailure(f"field [{self.field}] of type [{type(value).__name__}] is not a number")
        document.set_field_value(self.target_field, value * self.factor)
        return document


def create_multiply(registry, tag, description, config, parameters) -> MultiplyProcessor:
    t = MultiplyProcessor.TYPE
    return MultiplyProcessor(
        tag, description,
        read_str(t, tag, config, "field"),
        read_float(t, tag, config, "factor"),
        read_optional_str(t, tag, config, "target_field"),
        read_bool(t, tag, config, "ignore_missing", False),
    )
