from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..workflow.errors import WorkflowToolMissingError


class ToolSpec(BaseModel):
    """ Catalog entry describing a tool to the validator and the synthesizer. """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    identifier: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class RegisteredTool:
    spec: ToolSpec
    fn: Callable[[Any], Any]


class ToolRegistry:
    """
    Maps tool identifiers to Python callables taking the resolved input
    (a JSON value) and returning a JSON value. Registration happens at import
    or setup time; lookups never mutate the registry.
    """

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}

    def register(self, identifier: str, fn: Callable[[Any], Any], *, description: str = "",
                 input_schema: Optional[Dict[str, Any]] = None,
                 output_schema: Optional[Dict[str, Any]] = None) -> Callable[[Any], Any]:
        spec = ToolSpec(
            identifier=identifier,
            description=description or (fn.__doc__ or "").strip(),
            input_schema=input_schema or {},
            output_schema=output_schema or {},
        )
        self._tools[identifier] = RegisteredTool(spec, fn)
        return fn

    def tool(self, identifier: str, **kwargs):
        def _wrap(fn):
            return self.register(identifier, fn, **kwargs)
        return _wrap

    def get(self, identifier: str) -> Optional[RegisteredTool]:
        return self._tools.get(identifier)

    def specs(self) -> List[ToolSpec]:
        return [entry.spec for entry in self._tools.values()]

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._tools

    def __len__(self) -> int:
        return len(self._tools)


_DEFAULT = ToolRegistry()


def register_tool(identifier: str, *, description: str = "",
                  input_schema: Optional[Dict[str, Any]] = None,
                  output_schema: Optional[Dict[str, Any]] = None,
                  registry: Optional[ToolRegistry] = None):
    """ Decorator registering a callable in `registry` (the default registry when omitted). """
    target = registry if registry is not None else _DEFAULT

    def _wrap(fn):
        return target.register(identifier, fn, description=description,
                               input_schema=input_schema, output_schema=output_schema)
    return _wrap


def get_tool(identifier: str) -> Callable[[Any], Any]:
    entry = default_registry().get(identifier)
    if entry is None:
        raise WorkflowToolMissingError([identifier])
    return entry.fn


def default_registry() -> ToolRegistry:
    """ The process-wide registry, with the built-in tools loaded. """
    # Imported lazily: the built-in tool modules register themselves through this module.
    from . import binance  # noqa: F401
    return _DEFAULT
