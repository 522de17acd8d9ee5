""" Execution context and user context schema for workflow runs. """
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Maps a top-level context field to the remediation text shown to the user
# when a workflow references it but no value is set.
ContextSchema = Mapping[str, str]

DEFAULT_CONTEXT_DESCRIPTIONS: Dict[str, str] = {
    "telegramId": (
        "The Telegram ID of the user. You can use this to send messages to the user. "
        "You can go to my account tab to set it."
    ),
}


class UserContext(BaseModel):
    """ Concrete per-user values supplied by the host application at execute() time. """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    telegram_id: Optional[Union[int, str]] = Field(
        default=None,
        alias="telegramId",
        description=DEFAULT_CONTEXT_DESCRIPTIONS["telegramId"],
    )

    def as_context(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class ExecutionContext:
    """ Working values owned by a single execute() call. """
    context: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)
    input: Any = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def scope(self) -> Dict[str, Any]:
        """ Namespaces visible to `{{ ... }}` references. """
        return {"input": self.input, "context": self.context, "state": self.state}

    def advance(self, node_identifier: str, node_type: str, output: Any) -> None:
        self.logs.append({"node": node_identifier, "type": node_type})
        self.input = output
