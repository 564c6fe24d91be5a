"""
Processor factory registry and configuration readers.

Factories build processors from configuration maps. A factory has the
signature::

    factory(registry, tag, description, config, parameters) -> Processor

and must pop every key it reads from ``config``. Keys still present after
the factory returns are reported as UnconsumedConfigFields, once per
top-level processor definition.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.exceptions import (
    ConfigurationError,
    InvalidConfigValue,
    MissingConfigField,
    UnconsumedConfigFields,
    UnknownProcessorType,
)
from ..core.processor import Parameters, Processor, ProcessorConfig
from .compound import CompoundProcessor

logger = logging.getLogger(__name__)

ProcessorFactory = Callable[
    ["ProcessorRegistry", Optional[str], Optional[str], Dict[str, Any], Parameters],
    Processor,
]

_MISSING = object()


class ProcessorRegistry:
    """
    Maps processor type names to factories.

    The registry is read-only once pipelines are being built and may be
    shared freely between threads from then on.
    """

    def __init__(self, factories: Optional[Dict[str, ProcessorFactory]] = None):
        self._factories: Dict[str, ProcessorFactory] = {}
        for name, factory in (factories or {}).items():
            self.register(name, factory)

    @classmethod
    def with_defaults(cls) -> "ProcessorRegistry":
        """Registry holding every processor shipped with the package."""
        from ..processors import default_factories
        return cls(default_factories())

    def register(self, processor_type: str, factory: ProcessorFactory) -> None:
        if processor_type in self._factories:
            raise ValueError(f"Processor type [{processor_type}] is already registered")
        self._factories[processor_type] = factory
        logger.debug(f"Registered processor type [{processor_type}]")

    def get(self, processor_type: str) -> ProcessorFactory:
        try:
            return self._factories[processor_type]
        except KeyError:
            raise UnknownProcessorType(processor_type, self._factories.keys()) from None

    def types(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, processor_type: str) -> bool:
        return processor_type in self._factories

    def create_processor(self, definition: Dict[str, Any], parameters: Parameters) -> CompoundProcessor:
        """
        Build one processor, with its guard and failure handling, from a definition.

        Args:
            definition: One-key mapping ``{type: {config...}}``
            parameters: Shared runtime services

        Returns:
            A CompoundProcessor wrapping the built processor

        Raises:
            ConfigurationError: If the definition cannot be built
        """
        processor_config = ProcessorConfig.from_definition(definition)
        processor_type, tag = processor_config.type, processor_config.tag
        config = dict(processor_config.options)

        condition_spec = config.pop("if", None)
        on_failure_definitions = read_optional_list(processor_type, tag, config, "on_failure")
        ignore_failure = read_bool(processor_type, tag, config, "ignore_failure", False)

        factory = self.get(processor_type)
        try:
            processor = factory(self, tag, processor_config.description, config, parameters)
        except ConfigurationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfigValue(str(e), processor_type, tag) from e
        if config:
            raise UnconsumedConfigFields(config.keys(), processor_type, tag)

        condition = None
        if condition_spec is not None:
            try:
                condition = parameters.condition_compiler.compile(condition_spec)
            except ConfigurationError as e:
                raise InvalidConfigValue(str(e), processor_type, tag, "if") from e

        on_failure = None
        if on_failure_definitions is not None:
            if not on_failure_definitions:
                raise InvalidConfigValue("must not be empty", processor_type, tag, "on_failure")
            on_failure = self.create_chain(on_failure_definitions, parameters)

        return CompoundProcessor(processor, condition, on_failure, ignore_failure,
                                 context=parameters.context, relative_time=parameters.relative_time)

    def create_chain(self, definitions: Iterable[Dict[str, Any]], parameters: Parameters) -> List[CompoundProcessor]:
        """Build a list of processor definitions, in order."""
        if not isinstance(definitions, list):
            raise InvalidConfigValue(f"processors must be a list, got {type(definitions).__name__}")
        return [self.create_processor(definition, parameters) for definition in definitions]


# Configuration readers. Each pops its key from the config map.

def _pop(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
         name: str, default: Any) -> Any:
    value = config.pop(name, _MISSING)
    if value is _MISSING or value is None:
        if default is _MISSING:
            raise MissingConfigField(name, processor_type, tag)
        return default
    return value


def _invalid(processor_type, tag, name, expected, value) -> InvalidConfigValue:
    return InvalidConfigValue(
        f"property isn't a {expected}, but of type [{type(value).__name__}]",
        processor_type, tag, name,
    )


def read_str(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
             name: str, default: Any = _MISSING) -> str:
    value = _pop(processor_type, tag, config, name, default)
    if value is default and default is not _MISSING:
        return value
    if not isinstance(value, str):
        raise _invalid(processor_type, tag, name, "string", value)
    return value


def read_optional_str(processor_type, tag, config, name) -> Optional[str]:
    return read_str(processor_type, tag, config, name, None)


def read_bool(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
              name: str, default: Any = _MISSING) -> bool:
    value = _pop(processor_type, tag, config, name, default)
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    if not isinstance(value, bool):
        raise _invalid(processor_type, tag, name, "boolean", value)
    return value


def read_int(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
             name: str, default: Any = _MISSING) -> int:
    value = _pop(processor_type, tag, config, name, default)
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise _invalid(processor_type, tag, name, "integer", value)
    try:
        return int(value)
    except ValueError:
        raise _invalid(processor_type, tag, name, "integer", value) from None


def read_float(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
               name: str, default: Any = _MISSING) -> float:
    value = _pop(processor_type, tag, config, name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise _invalid(processor_type, tag, name, "number", value)
    try:
        return float(value)
    except ValueError:
        raise _invalid(processor_type, tag, name, "number", value) from None


def read_list(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
              name: str, default: Any = _MISSING) -> list:
    value = _pop(processor_type, tag, config, name, default)
    if value is default and default is not _MISSING:
        return value
    if not isinstance(value, list):
        raise _invalid(processor_type, tag, name, "list", value)
    return value


def read_optional_list(processor_type, tag, config, name) -> Optional[list]:
    return read_list(processor_type, tag, config, name, None)


def read_str_or_list(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
                     name: str) -> List[str]:
    value = _pop(processor_type, tag, config, name, _MISSING)
    values = value if isinstance(value, list) else [value]
    if not values or not all(isinstance(item, str) for item in values):
        raise _invalid(processor_type, tag, name, "string or list of strings", value)
    return values


def read_map(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
             name: str, default: Any = _MISSING) -> Dict[str, Any]:
    value = _pop(processor_type, tag, config, name, default)
    if value is default and default is not _MISSING:
        return value
    if not isinstance(value, dict):
        raise _invalid(processor_type, tag, name, "map", value)
    return value


def read_object(processor_type: Optional[str], tag: Optional[str], config: Dict[str, Any],
                name: str) -> Any:
    """Pop a required value of any type."""
    return _pop(processor_type, tag, config, name, _MISSING)
