from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stepflow.core.exceptions import EmptyWorkflow, WorkflowNotFound
from stepflow.database import get_db
from stepflow.models.workflow import parse_steps
from stepflow.schemas.workflow import (
    ConversionSchema,
    ConvertRequest,
    ExecuteDirectRequest,
    RunRequest,
    WorkflowCreate,
    WorkflowCreated,
    WorkflowSchema,
)
from stepflow.services.graph_converter import convert_graph, graph_from_editor_export, graph_from_payload
from stepflow.services.workflow_engine import (
    WorkflowEngine,
    get_workflow_engine,
    run_workflow_by_id,
    run_workflow_direct,
)
from stepflow.services.workflow_store import delete_workflow, get_workflow, list_workflows, save_workflow

logger = logging.getLogger(__name__)
router = APIRouter()

# Error types that mean the request itself was bad, not that a step failed.
REQUEST_ERROR_STATUS = {
    WorkflowNotFound.__name__: 404,
    EmptyWorkflow.__name__: 400,
}


def _raise_for_request_error(result: dict[str, Any]) -> None:
    if result.get("success"):
        return
    error = result.get("error") or {}
    status_code = REQUEST_ERROR_STATUS.get(error.get("type"))
    if status_code:
        raise HTTPException(status_code=status_code, detail=error.get("message"))


@router.get("", response_model=list[WorkflowSchema])
async def get_workflows(db: Session = Depends(get_db)):
    return [workflow.to_dict() for workflow in list_workflows(db)]


@router.post("", response_model=WorkflowCreated, status_code=201)
async def post_workflow(payload: WorkflowCreate, db: Session = Depends(get_db)):
    try:
        steps = parse_steps(payload.steps)
    except EmptyWorkflow as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    workflow_id = save_workflow(db, payload.name, payload.description, steps)
    return {"id": workflow_id, "name": payload.name}


@router.post("/execute-direct")
async def execute_direct(
    payload: ExecuteDirectRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> dict[str, Any]:
    result = await run_workflow_direct(payload.steps, payload.input, engine=engine)
    _raise_for_request_error(result)
    return result


@router.post("/convert", response_model=ConversionSchema)
async def convert_workflow(payload: ConvertRequest):
    if payload.editor_export is not None:
        graph = graph_from_editor_export(payload.editor_export)
    else:
        graph = graph_from_payload(payload.graph or {})
    return convert_graph(graph).to_dict()


@router.get("/{workflow_id}", response_model=WorkflowSchema)
async def workflow_detail(workflow_id: int, db: Session = Depends(get_db)):
    workflow = get_workflow(db, workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow.to_dict()


@router.delete("/{workflow_id}")
async def remove_workflow(workflow_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
    if not delete_workflow(db, workflow_id):
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"success": True, "id": workflow_id}


@router.post("/{workflow_id}/run")
async def run_workflow(
    workflow_id: int,
    payload: RunRequest | None = None,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> dict[str, Any]:
    initial_context = payload.input if payload else ""
    result = await run_workflow_by_id(db, workflow_id, initial_context, engine=engine)
    _raise_for_request_error(result)
    return result
