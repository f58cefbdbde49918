from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tasksync.core.normalize import is_truthy, parse_timestamp


def relationship_id(relationships: dict[str, Any], name: str) -> str | None:
    relation = relationships.get(name)
    if not isinstance(relation, dict):
        return None
    data = relation.get("data")
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


class Resource(BaseModel):
    """A JSON:API resource object as returned by the record service."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    type: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    relationships: dict[str, Any] = Field(default_factory=dict)
    links: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("attributes", "relationships", "links", mode="before")
    @classmethod
    def _default_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class WorkItem(Resource):
    type: str | None = "tasks"

    @property
    def title(self) -> str:
        return str(self.attributes.get("title") or "")

    @property
    def description(self) -> str | None:
        value = self.attributes.get("description")
        return str(value) if value else None

    @property
    def number(self) -> Any:
        return self.attributes.get("number")

    @property
    def due(self) -> datetime | None:
        return parse_timestamp(self.attributes.get("due"))

    @property
    def registered_at(self) -> datetime | None:
        return parse_timestamp(self.attributes.get("registered-at") or self.attributes.get("registered_at"))

    @property
    def completed(self) -> bool:
        return is_truthy(self.attributes.get("completed"))

    @property
    def assignee_id(self) -> str | None:
        return relationship_id(self.relationships, "assignee")

    @property
    def category_id(self) -> str | None:
        return relationship_id(self.relationships, "category")

    def with_attributes(self, overlay: dict[str, Any]) -> "WorkItem":
        return self.model_copy(update={"attributes": {**self.attributes, **overlay}})


class AuditEvent(Resource):
    id: str | None = None  # type: ignore[assignment]
    type: str | None = "task-historics"


class ItemPage(BaseModel):
    items: list[WorkItem] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)
    links: dict[str, Any] = Field(default_factory=dict)


# ----------------------------------------------------------------------
# request bodies accepted by the HTTP surface
# ----------------------------------------------------------------------
class FilterUpdate(BaseModel):
    search: str | None = None
    mine: bool | None = None
    category_id: str | None = None
    assignee_id: str | None = None


class CompletionRequest(BaseModel):
    completed: bool
    due: datetime | None = None
    use_default: bool = False


class MoveRequest(BaseModel):
    source: str
    target: str
    due: datetime | None = None
    use_default: bool = False


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    due: datetime | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    def to_attributes(self) -> dict[str, Any]:
        payload = dict(self.attributes)
        payload["title"] = self.title
        if self.description is not None:
            payload["description"] = self.description
        if self.due is not None:
            payload["due"] = self.due.isoformat()
        return payload


class TaskUpdate(BaseModel):
    attributes: dict[str, Any] = Field(default_factory=dict)
