from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stepflow.core.exceptions import EmptyWorkflow
from stepflow.database import get_db
from stepflow.schemas.workflow import N8NImportRequest
from stepflow.services.n8n_parser import extract_workflow_json, n8n_parser
from stepflow.services.workflow_store import save_workflow

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/import")
async def import_n8n_workflow(payload: N8NImportRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    n8n_json = payload.workflow if payload.workflow is not None else extract_workflow_json(payload.text or "")
    if n8n_json is None:
        raise HTTPException(status_code=400, detail="No n8n workflow JSON found in the request")

    try:
        imported = n8n_parser.parse_workflow(n8n_json)
    except EmptyWorkflow as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    conversion = imported.convert()
    workflow_id = None
    if payload.save and conversion.steps:
        workflow_id = save_workflow(db, imported.name, "Imported from n8n", conversion.steps)

    missing_apis = [api for api in imported.required_apis if not api["configured"]]
    return {
        "success": True,
        "workflow_id": workflow_id,
        "workflow_name": imported.name,
        "node_count": len(imported.graph.nodes),
        "graph": imported.graph.to_dict(),
        "steps": [step.to_dict() for step in conversion.steps],
        "warnings": conversion.warnings,
        "needs_configuration": imported.needs_configuration,
        "required_apis": imported.required_apis,
        "missing_apis": missing_apis,
    }
