""" Data models for workflow representation """

from typing import Annotated, Any, Dict, Iterator, Literal, Optional, Union

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

# Any JSON-compatible value: null, bool, number, string, list or object.
JSONValue = Any


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


class NodeBase(_Frozen):
    identifier: str
    child: Optional["Node"] = None


class CronJobTrigger(NodeBase):
    """ Root of every workflow. Does not produce data; `cron` is read by an external scheduler. """
    type: Literal["cronjob-trigger"] = "cronjob-trigger"
    cron: str

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        value = value.strip()
        if len(value.split()) != 5 or not croniter.is_valid(value):
            raise ValueError(f"Invalid cron expression (expected 5 fields): {value!r}")
        return value


class FixedInput(NodeBase):
    """ Emits `output` after resolving references; `input` documents the expected upstream value. """
    type: Literal["fixed-input"] = "fixed-input"
    input: JSONValue = None
    output: JSONValue


class ToolNode(NodeBase):
    type: Literal["tool"] = "tool"
    tool_identifier: str
    # Argument template. When absent the upstream value is passed through.
    input: JSONValue = None
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class ConverterNode(NodeBase):
    """ User code defining `handle(input)`, run in an isolated child process. """
    type: Literal["converter"] = "converter"
    code: str
    runtime: Literal["js", "python"] = "js"


class UpsertStateNode(NodeBase):
    type: Literal["upsert-state"] = "upsert-state"
    key: str
    value: JSONValue = None


class SkipNode(NodeBase):
    """ Ends the chain early and returns its input unchanged. """
    type: Literal["skip"] = "skip"


Node = Annotated[
    Union[CronJobTrigger, FixedInput, ToolNode, ConverterNode, UpsertStateNode, SkipNode],
    Field(discriminator="type"),
]

for _model in (NodeBase, CronJobTrigger, FixedInput, ToolNode, ConverterNode, UpsertStateNode, SkipNode):
    _model.model_rebuild()

NODE_ADAPTER: TypeAdapter = TypeAdapter(Node)


class Workflow(_Frozen):
    title: str
    trigger: CronJobTrigger

    def iter_nodes(self) -> Iterator[NodeBase]:
        """ Yield the chain trigger-first. """
        node: Optional[NodeBase] = self.trigger
        while node is not None:
            yield node
            node = node.child

    def find_node(self, identifier: str) -> Optional[NodeBase]:
        for node in self.iter_nodes():
            if node.identifier == identifier:
                return node
        return None


class ExecutionResult(_Frozen):
    data: JSONValue = None
