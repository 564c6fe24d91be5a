"""
Guard conditions for processors.

A processor definition may carry an ``if`` key. ConditionCompiler turns that
value into a predicate over an IngestDocument. Supported forms:

- ``true`` / ``false``
- ``{"exists": "path"}``
- ``{"equals": {"field": "path", "value": ...}}``
- ``{"not": <condition>}``
- ``{"all": [<condition>, ...]}`` and ``{"any": [<condition>, ...]}``
- any Python callable taking the document (programmatic pipelines)

Replace the compiler in Parameters to plug in another evaluator.
"""

from typing import Any, Callable

from .document import IngestDocument
from .exceptions import InvalidConfigValue

Condition = Callable[[IngestDocument], bool]

_MISSING = object()


class ConditionCompiler:
    """Compiles declarative condition specs into predicates."""

    def compile(self, spec: Any) -> Condition:
        if callable(spec):
            return spec
        if isinstance(spec, bool):
            return lambda document: spec
        if not isinstance(spec, dict) or len(spec) != 1:
            raise InvalidConfigValue(
                f"condition must be a boolean or an object with exactly one operator, got {spec!r}",
                property_name="if",
            )
        operator, argument = next(iter(spec.items()))
        builder = getattr(self, f"_compile_{operator}", None)
        if builder is None:
            raise InvalidConfigValue(f"unknown condition operator [{operator}]", property_name="if")
        return builder(argument)

    def _compile_exists(self, argument: Any) -> Condition:
        if not isinstance(argument, str):
            raise InvalidConfigValue("[exists] takes a field path", property_name="if")
        return lambda document: document.has_field(argument)

    def _compile_equals(self, argument: Any) -> Condition:
        if not isinstance(argument, dict) or "field" not in argument or "value" not in argument:
            raise InvalidConfigValue("[equals] takes an object with [field] and [value]",
                                     property_name="if")
        field, value = argument["field"], argument["value"]
        return lambda document: document.get_field_value(field, _MISSING) == value

    def _compile_not(self, argument: Any) -> Condition:
        inner = self.compile(argument)
        return lambda document: not inner(document)

    def _compile_all(self, argument: Any) -> Condition:
        conditions = [self.compile(item) for item in self._as_list("all", argument)]
        return lambda document: all(condition(document) for condition in conditions)

    def _compile_any(self, argument: Any) -> Condition:
        conditions = [self.compile(item) for item in self._as_list("any", argument)]
        return lambda document: any(condition(document) for condition in conditions)

    @staticmethod
    def _as_list(operator: str, argument: Any) -> list:
        if not isinstance(argument, list):
            raise InvalidConfigValue(f"[{operator}] takes a list of conditions", property_name="if")
        return argument
