""" Incremental workflow construction used by the synthesizer and by hand-written examples. """

from typing import Any, Dict, List, Optional, Union

from .compiler import check_structure
from .errors import WorkflowDefinitionError
from .models import CronJobTrigger, NodeBase, Workflow
from .schema import validate_node, validate_workflow

NodeLike = Union[NodeBase, Dict[str, Any]]


class WorkflowBuilder:
    """
    Mutable view over a linear chain. Nodes are kept child-less in `_chain`
    and linked together by compile().
    """

    def __init__(self, title: str, cron: str = "*/10 * * * *", trigger_identifier: str = "trigger"):
        self.title = title
        self._trigger = CronJobTrigger(identifier=trigger_identifier, cron=cron)
        self._chain: List[NodeBase] = []

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowBuilder":
        builder = cls(workflow.title, workflow.trigger.cron, workflow.trigger.identifier)
        builder._chain = _flatten(workflow.trigger.child)
        return builder

    def set_trigger(self, cron: str, identifier: Optional[str] = None) -> "WorkflowBuilder":
        self._trigger = CronJobTrigger(identifier=identifier or self._trigger.identifier, cron=cron)
        return self

    def add_child(self, parent_identifier: Optional[str], node: NodeLike) -> "WorkflowBuilder":
        """
        Attach `node` (and any children it carries) below `parent_identifier`.
        None attaches below the trigger and replaces the current chain.
        """
        nodes = _flatten(_coerce(node))
        if parent_identifier is None or parent_identifier == self._trigger.identifier:
            if parent_identifier is not None and self._chain:
                raise WorkflowDefinitionError(
                    f"Node with identifier {parent_identifier} already has a child", parent_identifier
                )
            self._chain = nodes
            return self

        index = self._index(parent_identifier)
        if index != len(self._chain) - 1:
            raise WorkflowDefinitionError(
                f"Node with identifier {parent_identifier} already has a child", parent_identifier
            )
        self._chain.extend(nodes)
        return self

    def remove_child(self, identifier: str) -> "WorkflowBuilder":
        """ Detach the node and everything below it. """
        if identifier == self._trigger.identifier:
            raise WorkflowDefinitionError("Cannot remove root trigger node", identifier)
        del self._chain[self._index(identifier):]
        return self

    def modify_child(self, identifier: str, node: NodeLike) -> "WorkflowBuilder":
        """ Replace a node in place; the replaced node's child is kept. """
        if identifier == self._trigger.identifier:
            raise WorkflowDefinitionError("Cannot modify root trigger node", identifier)
        replacement = _coerce(node).model_copy(update={"child": None})
        self._chain[self._index(identifier)] = replacement
        return self

    def swap(self, a: str, b: str) -> "WorkflowBuilder":
        i, j = self._index(a), self._index(b)
        self._chain[i], self._chain[j] = self._chain[j], self._chain[i]
        return self

    def find_node(self, identifier: str) -> Optional[NodeBase]:
        if identifier == self._trigger.identifier:
            return self._trigger
        for node in self._chain:
            if node.identifier == identifier:
                return node
        return None

    def compile(self) -> Workflow:
        child: Optional[NodeBase] = None
        for node in reversed(self._chain):
            child = node.model_copy(update={"child": child})
        trigger = self._trigger.model_copy(update={"child": child})

        # Round-trip through validation so compiled workflows obey the same
        # rules as loaded ones.
        workflow = validate_workflow(
            Workflow(title=self.title, trigger=trigger).model_dump(by_alias=True)
        )
        check_structure(workflow)
        return workflow

    def _index(self, identifier: str) -> int:
        for i, node in enumerate(self._chain):
            if node.identifier == identifier:
                return i
        raise WorkflowDefinitionError(f"Node with identifier {identifier} not found", identifier)


def _coerce(node: NodeLike) -> NodeBase:
    if isinstance(node, NodeBase):
        return node
    return validate_node(node)


def _flatten(node: Optional[NodeBase]) -> List[NodeBase]:
    nodes = []
    while node is not None:
        nodes.append(node.model_copy(update={"child": None}))
        node = node.child
    return nodes
