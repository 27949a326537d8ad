"""
Workflow Execution Engine

Interprets a Step list: each step is dispatched to its behavior, the
context produced by step N is what step N+1 sees, and the first exception
aborts the run. Runs are independent coroutines; a delay or a slow provider
suspends only its own run.

State machine per run:
    PENDING -> RUNNING(index) -> COMPLETED(final context)
                              -> FAILED(error, index)
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy.orm import Session

from stepflow.config import settings
from stepflow.core.exceptions import (
    HttpRequestFailed,
    MissingRequiredParam,
    StepExecutionFailed,
    UnknownStepType,
    WorkflowError,
    WorkflowNotFound,
)
from stepflow.models.context import Context, TextContext, context_of, parse_response_body
from stepflow.models.workflow import Step, StepType, Workflow, parse_steps
from stepflow.services.code_sandbox import CodeSandbox, InProcessCodeSandbox
from stepflow.services.expressions import resolve
from stepflow.services.http_transport import HttpTransport
from stepflow.services.providers import (
    AnthropicChatProvider,
    ChatProvider,
    PollinationsImageProvider,
    ProviderRotation,
    collect_text,
)
from stepflow.services.workflow_store import get_workflow

logger = logging.getLogger(__name__)

WorkflowLoader = Callable[[Any], "Workflow | None"]
StepHandler = Callable[[Step, Context], Awaitable[Context]]


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunState:
    total_steps: int
    context: Context = field(default_factory=lambda: TextContext(""))
    status: RunStatus = RunStatus.PENDING
    step_index: int = 0
    error: StepExecutionFailed | None = None

    @property
    def output(self) -> str:
        return self.context.as_text()

    def advance(self, index: int) -> None:
        self.status = RunStatus.RUNNING
        self.step_index = index

    def complete(self) -> None:
        self.status = RunStatus.COMPLETED

    def fail(self, error: StepExecutionFailed) -> None:
        self.status = RunStatus.FAILED
        self.error = error


class WorkflowEngine:
    def __init__(
        self,
        chat_providers: ProviderRotation | None = None,
        image_provider: ChatProvider | None = None,
        transport: HttpTransport | None = None,
        sandbox: CodeSandbox | None = None,
        workflow_loader: WorkflowLoader | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.chat_providers = chat_providers or ProviderRotation([AnthropicChatProvider()])
        self.image_provider = image_provider or PollinationsImageProvider()
        self.transport = transport or HttpTransport()
        self.sandbox = sandbox or InProcessCodeSandbox()
        self.workflow_loader = workflow_loader
        self._sleep = sleep
        self._handlers: dict[StepType, StepHandler] = {
            StepType.TRIGGER: self._run_trigger,
            StepType.CODE: self._run_code,
            StepType.LLM: self._run_llm,
            StepType.IMAGE: self._run_image,
            StepType.HTTP_REQUEST: self._run_http_request,
            StepType.DELAY: self._run_delay,
        }

    # ==========================================================================
    # Entry points
    # ==========================================================================

    async def execute(
        self,
        workflow_id: Any,
        initial_context: Any = "",
        loader: WorkflowLoader | None = None,
    ) -> str:
        """Load a stored workflow once and run its steps."""
        loader = loader or self.workflow_loader
        if loader is None:
            raise RuntimeError("WorkflowEngine.execute needs a workflow loader")
        workflow = loader(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)

        logger.info("[Workflow] Starting: %s", workflow.name)
        return await self.run_steps(workflow.steps, initial_context)

    async def execute_direct(self, steps: Iterable[Any], initial_context: Any = "") -> str:
        """Run a caller-supplied step list without persisting it."""
        steps = list(steps or [])
        logger.info("[Workflow] Executing direct (%s steps)", len(steps))
        return await self.run_steps(steps, initial_context)

    async def run_steps(self, steps: Iterable[Any], initial_context: Any = "") -> str:
        state = await self.run(steps, initial_context)
        if state.error is not None:
            raise state.error
        return state.output

    async def run(self, steps: Iterable[Any], initial_context: Any = "") -> RunState:
        """Run to a terminal state. Step failures are recorded on the state, not raised."""
        parsed = parse_steps(steps)
        state = RunState(total_steps=len(parsed), context=context_of(initial_context))

        for index, step in enumerate(parsed, start=1):
            state.advance(index)
            logger.info("[Step %s/%s] %s", index, state.total_steps, step.type)
            try:
                state.context = await self._run_step(step, state.context)
            except Exception as exc:
                logger.error("[ERROR] Step %s (%s) failed: %s", index, step.type, exc)
                state.fail(StepExecutionFailed(index, step.type, exc))
                return state

        state.complete()
        logger.info("[Workflow] Completed successfully.")
        return state

    # ==========================================================================
    # Step behaviors
    # ==========================================================================

    async def _run_step(self, step: Step, context: Context) -> Context:
        step_type = step.step_type
        handler = self._handlers.get(step_type) if step_type else None
        if handler is None:
            logger.warning("[WARN] %s, skipping", UnknownStepType(step.type))
            return context
        return await handler(step, context)

    @staticmethod
    def _require(step: Step, param: str) -> Any:
        value = step.params.get(param)
        if value in (None, ""):
            logger.warning("[WARN] %s, skipping", MissingRequiredParam(step.type, param))
            return None
        return value

    async def _run_trigger(self, step: Step, context: Context) -> Context:
        logger.info("[Trigger] Starting workflow")
        return context

    async def _run_code(self, step: Step, context: Context) -> Context:
        code = self._require(step, "code")
        if code is None:
            return context

        logger.info("[Code] Executing fragment")
        result = await asyncio.to_thread(self.sandbox.run, str(code), context.as_code_input())
        # A fragment that returns nothing leaves the context as it was.
        if result is None:
            return context
        return context_of(result)

    async def _complete_prompt(self, provider: ChatProvider, step: Step, context: Context) -> Context | None:
        prompt = self._require(step, "prompt")
        if prompt is None:
            return None
        resolved = resolve(str(prompt), context)
        text = await collect_text(provider, [{"role": "user", "content": resolved}])
        return TextContext(text)

    async def _run_llm(self, step: Step, context: Context) -> Context:
        provider = self.chat_providers.next()
        logger.info("[LLM] Using %s", provider.name)
        result = await self._complete_prompt(provider, step, context)
        return context if result is None else result

    async def _run_image(self, step: Step, context: Context) -> Context:
        result = await self._complete_prompt(self.image_provider, step, context)
        return context if result is None else result

    async def _run_http_request(self, step: Step, context: Context) -> Context:
        url = self._require(step, "url")
        if url is None:
            return context

        url = resolve(str(url), context)
        method = str(step.params.get("method") or "GET").upper()
        headers = {str(k): resolve(str(v), context) for k, v in (step.params.get("headers") or {}).items()}

        body = None
        if method != "GET":
            template = step.params.get("body") or json.dumps({"data": context.value}, default=str)
            if not isinstance(template, str):
                template = json.dumps(template, default=str)
            body = resolve(template, context)
            headers.setdefault("Content-Type", "application/json")

        logger.info("[HTTP] %s %s", method, url)
        response = await self.transport.request(url, method, headers=headers or None, body=body)
        if not response.ok:
            raise HttpRequestFailed(f"HTTP {response.status}: {response.reason}", status=response.status)

        logger.info("[HTTP] Response received")
        return parse_response_body(response.text)

    async def _run_delay(self, step: Step, context: Context) -> Context:
        seconds = self._delay_seconds(step.params)
        logger.info("[Delay] Waiting %ss...", seconds)
        await self._sleep(seconds)
        return context

    @staticmethod
    def _delay_seconds(params: dict[str, Any]) -> float:
        try:
            if params.get("seconds") not in (None, ""):
                return max(int(float(params["seconds"])), 0)
            if params.get("ms") not in (None, ""):
                return max(float(params["ms"]) / 1000.0, 0.0)
        except (TypeError, ValueError):
            logger.warning("[Delay] Invalid duration %r, using default", params)
        return settings.default_delay_seconds


@lru_cache
def get_workflow_engine() -> WorkflowEngine:
    """Return the shared engine. It holds collaborators only, never run state."""
    return WorkflowEngine()


def _error_payload(exc: WorkflowError) -> dict[str, Any]:
    if isinstance(exc, StepExecutionFailed):
        return exc.to_dict()
    return {"message": str(exc), "type": type(exc).__name__, "step_index": None, "step_type": None}


async def run_workflow_by_id(
    db: Session,
    workflow_id: int,
    initial_context: Any = "",
    engine: WorkflowEngine | None = None,
) -> dict[str, Any]:
    engine = engine or get_workflow_engine()
    try:
        output = await engine.execute(workflow_id, initial_context, loader=lambda wid: get_workflow(db, wid))
    except WorkflowError as exc:
        return {"success": False, "workflow_id": workflow_id, "error": _error_payload(exc)}
    return {"success": True, "workflow_id": workflow_id, "output": output}


async def run_workflow_direct(
    steps: Iterable[Any],
    initial_context: Any = "",
    engine: WorkflowEngine | None = None,
) -> dict[str, Any]:
    engine = engine or get_workflow_engine()
    try:
        output = await engine.execute_direct(steps, initial_context)
    except WorkflowError as exc:
        return {"success": False, "error": _error_payload(exc)}
    return {"success": True, "output": output}
