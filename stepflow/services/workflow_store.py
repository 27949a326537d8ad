from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from stepflow.core.exceptions import EmptyWorkflow
from stepflow.models import WorkflowRecord
from stepflow.models.workflow import Step, Workflow, parse_steps

logger = logging.getLogger(__name__)


def _encode_steps(steps: Iterable[Any]) -> str:
    payload = [step.to_dict() if isinstance(step, Step) else step for step in steps or []]
    return json.dumps(payload, default=str)


def _decode_steps(steps_json: str | None) -> list[Step]:
    try:
        raw = json.loads(steps_json or "[]")
    except json.JSONDecodeError:
        logger.warning("Stored step list is not valid JSON; treating it as empty")
        return []
    try:
        return parse_steps(raw if isinstance(raw, list) else [])
    except EmptyWorkflow:
        return []


def _to_workflow(row: WorkflowRecord) -> Workflow:
    return Workflow(
        id=row.id,
        name=row.name,
        description=row.description or "",
        steps=_decode_steps(row.steps_json),
        created_at=row.created_at,
    )


def save_workflow(db: Session, name: str, description: str | None, steps: Iterable[Any]) -> int:
    row = WorkflowRecord(name=name, description=description or "", steps_json=_encode_steps(steps))
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Saved workflow %s (%s)", row.id, name)
    return row.id


def list_workflows(db: Session) -> list[Workflow]:
    rows = db.query(WorkflowRecord).order_by(WorkflowRecord.created_at.desc(), WorkflowRecord.id.desc()).all()
    return [_to_workflow(row) for row in rows]


def get_workflow(db: Session, workflow_id: int) -> Workflow | None:
    row = db.query(WorkflowRecord).filter(WorkflowRecord.id == workflow_id).first()
    if not row:
        return None
    return _to_workflow(row)


def delete_workflow(db: Session, workflow_id: int) -> bool:
    row = db.query(WorkflowRecord).filter(WorkflowRecord.id == workflow_id).first()
    if not row:
        return False
    db.delete(row)
    db.commit()
    logger.info("Deleted workflow %s", workflow_id)
    return True
