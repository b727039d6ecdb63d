"""Pydantic schemas for task records extracted from requirement documents."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from llm_taskgen.core.errors import RecordValidationError


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    BACKLOG = "backlog"


class ExtractedTask(BaseModel):
    """One task candidate recovered from provider output."""

    title: str = Field(min_length=3, max_length=150, description="Concise task title")
    description: str = Field(min_length=10, description="What needs to be implemented")
    priority: TaskPriority
    complexity: int = Field(ge=1, le=10, description="1 (trivial) to 10 (most complex)")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Titles of tasks that must be completed first",
    )
    tags: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("complexity", mode="before")
    @classmethod
    def _numeric_complexity(cls, v: Any) -> Any:
        # JSON true and "5" must not be coerced into a score
        if isinstance(v, (bool, str)):
            raise ValueError("complexity must be a JSON number")
        return v

    @field_validator("dependencies", "tags", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


_TASK_LIST = TypeAdapter(list[ExtractedTask])


def validate_records(items: Any) -> list[ExtractedTask]:
    """Validate a recovered array against the task schema.

    Raises RecordValidationError describing every failing field.
    """
    try:
        return _TASK_LIST.validate_python(items)
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise RecordValidationError(
            f"Invalid task format ({e.error_count()} error(s)): " + "; ".join(problems[:5]),
            operation="validate_records",
            details={"errors": problems},
            cause=e,
        ) from e


def resolve_dependency_titles(tasks: list[ExtractedTask]) -> list[list[int]]:
    """Map each task's dependency titles to indices within the same batch.

    Unknown titles and self-references are dropped. When titles repeat, the
    first task with that title wins.
    """
    index_by_title: dict[str, int] = {}
    for i, task in enumerate(tasks):
        index_by_title.setdefault(task.title, i)

    resolved: list[list[int]] = []
    for i, task in enumerate(tasks):
        indices: list[int] = []
        for title in task.dependencies:
            idx = index_by_title.get(title)
            if idx is not None and idx != i and idx not in indices:
                indices.append(idx)
        resolved.append(indices)
    return resolved
