from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class StepSchema(BaseModel):
    id: str
    type: str
    name: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    # Raw entries; legacy flat-field shapes are normalized on save.
    steps: list[Any] = Field(default_factory=list)


class WorkflowSchema(BaseModel):
    id: int
    name: str
    description: str = ""
    steps: list[StepSchema] = Field(default_factory=list)
    created_at: datetime | None = None


class WorkflowCreated(BaseModel):
    id: int
    name: str


class RunRequest(BaseModel):
    input: Any = ""


class ExecuteDirectRequest(BaseModel):
    steps: list[Any] = Field(default_factory=list)
    input: Any = ""


class ConvertRequest(BaseModel):
    """Either the editor's Drawflow export or a plain {nodes, connections} graph."""

    editor_export: dict[str, Any] | None = None
    graph: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_source(self) -> ConvertRequest:
        if self.editor_export is None and self.graph is None:
            raise ValueError("Provide either editor_export or graph")
        return self


class ConversionSchema(BaseModel):
    steps: list[StepSchema] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    needs_configuration: list[str] = Field(default_factory=list)


class N8NImportRequest(BaseModel):
    workflow: dict[str, Any] | None = None
    # Free text (e.g. a chat reply) containing the export in a ```json block.
    text: str | None = None
    save: bool = False

    @model_validator(mode="after")
    def check_source(self) -> N8NImportRequest:
        if self.workflow is None and not self.text:
            raise ValueError("Provide either workflow or text")
        return self
