from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from stepflow.core.exceptions import CodeExecutionError, HttpRequestFailed, StepExecutionFailed, WorkflowNotFound
from stepflow.models.workflow import Workflow, parse_steps
from stepflow.services.http_transport import HttpTransport
from stepflow.services.providers import ChatProvider, ProviderRotation
from stepflow.services.workflow_engine import RunStatus, WorkflowEngine, run_workflow_direct


class FakeProvider(ChatProvider):
    def __init__(self, name, fragments):
        self.name = name
        self.fragments = fragments
        self.calls = []

    async def chat(self, messages):
        self.calls.append(list(messages))
        for fragment in self.fragments:
            yield fragment


def make_engine(handler=None, providers=None, image_provider=None, sleep=None):
    def default_handler(request):
        return httpx.Response(200, json={"msg": "hi"})

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return WorkflowEngine(
        chat_providers=ProviderRotation(providers or [FakeProvider("fake", ["ok"])]),
        image_provider=image_provider or FakeProvider("fake-image", ["![img](data:image/png;base64,AAA)"]),
        transport=HttpTransport(transport=httpx.MockTransport(handler or default_handler)),
        **kwargs,
    )


async def no_sleep(seconds):
    return None


@pytest.mark.asyncio
async def test_trigger_delay_code_run():
    slept = []

    async def record_sleep(seconds):
        slept.append(seconds)

    engine = make_engine(sleep=record_sleep)
    steps = [
        {"type": "trigger"},
        {"type": "delay", "params": {"seconds": 2}},
        {"type": "code", "params": {"code": "return {'msg': 'hi'}"}},
    ]
    output = await engine.run_steps(steps)
    assert json.loads(output) == {"msg": "hi"}
    assert output == '{\n  "msg": "hi"\n}'
    assert slept == [2]


@pytest.mark.asyncio
async def test_http_response_feeds_next_step():
    engine = make_engine()
    steps = [
        {"type": "http_request", "params": {"url": "https://api.example.com/items"}},
        {"type": "code", "params": {"code": "return _json['msg'].upper()"}},
    ]
    assert await engine.run_steps(steps) == "HI"


@pytest.mark.asyncio
async def test_http_post_sends_default_body_and_resolves_url():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text="accepted")

    engine = make_engine(handler)
    steps = [{"type": "http", "url": "https://api.example.com/{{ $json.kind }}", "method": "post"}]
    output = await engine.run_steps(steps, {"kind": "posts"})

    assert output == "accepted"
    assert seen == {
        "method": "POST",
        "url": "https://api.example.com/posts",
        "content_type": "application/json",
        "body": {"data": {"kind": "posts"}},
    }


@pytest.mark.asyncio
async def test_http_body_template_is_resolved():
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={})

    engine = make_engine(handler)
    steps = [
        {
            "type": "http_request",
            "params": {"url": "https://api.example.com", "method": "PUT", "body": '{"title": "{{ $json.title }}"}'},
        }
    ]
    await engine.run_steps(steps, {"title": "Hello"})
    assert seen["body"] == '{"title": "Hello"}'


@pytest.mark.asyncio
async def test_failing_http_step_aborts_run():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    provider = FakeProvider("fake", ["never"])
    engine = make_engine(handler, providers=[provider])
    steps = [
        {"type": "http_request", "params": {"url": "https://not-a-host.invalid/"}},
        {"type": "llm", "params": {"prompt": "Summarize {{context}}"}},
    ]

    with pytest.raises(StepExecutionFailed) as exc_info:
        await engine.run_steps(steps)
    assert exc_info.value.step_index == 1
    assert exc_info.value.step_type == "http_request"
    assert isinstance(exc_info.value.cause, HttpRequestFailed)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_non_2xx_status_fails_the_step():
    engine = make_engine(lambda request: httpx.Response(500, text="boom"))
    state = await engine.run([{"type": "http_request", "params": {"url": "https://api.example.com"}}])
    assert state.status is RunStatus.FAILED
    assert state.error.step_index == 1
    assert isinstance(state.error.cause, HttpRequestFailed)
    assert state.error.cause.status == 500
    assert "HTTP 500" in str(state.error.cause)


@pytest.mark.asyncio
async def test_code_failure_reports_step_index():
    engine = make_engine()
    state = await engine.run(
        [
            {"type": "trigger"},
            {"type": "code", "params": {"code": "return 1 / 0"}},
            {"type": "code", "params": {"code": "return 'unreachable'"}},
        ]
    )
    assert state.status is RunStatus.FAILED
    assert state.step_index == 2
    assert isinstance(state.error.cause, CodeExecutionError)


@pytest.mark.asyncio
async def test_delay_suspends_only_its_own_run():
    engine = make_engine()
    delayed_steps = [{"type": "delay", "params": {"seconds": 1}}, {"type": "code", "params": {"code": "return 'slow'"}}]
    fast_steps = [{"type": "code", "params": {"code": "return 'fast'"}}]
    started = time.monotonic()

    async def timed(steps):
        output = await engine.run_steps(steps)
        return output, time.monotonic() - started

    (slow_output, delayed), (fast_output, fast) = await asyncio.gather(timed(delayed_steps), timed(fast_steps))

    assert (slow_output, fast_output) == ("slow", "fast")
    assert delayed >= 1.0
    assert fast < 0.5


@pytest.mark.asyncio
async def test_llm_prompt_is_resolved_and_fragments_joined():
    provider = FakeProvider("fake", ["Hel", "lo"])
    engine = make_engine(providers=[provider])
    output = await engine.run_steps([{"type": "llm", "params": {"prompt": "Summarize {{context}}"}}], "news")
    assert output == "Hello"
    assert provider.calls == [[{"role": "user", "content": "Summarize news"}]]


@pytest.mark.asyncio
async def test_llm_providers_rotate():
    first = FakeProvider("first", ["1"])
    second = FakeProvider("second", ["2"])
    engine = make_engine(providers=[first, second])
    steps = [{"type": "llm", "prompt": "a"}, {"type": "llm", "prompt": "b {{context}}"}]
    assert await engine.run_steps(steps) == "2"
    assert first.calls == [[{"role": "user", "content": "a"}]]
    assert second.calls == [[{"role": "user", "content": "b 1"}]]


@pytest.mark.asyncio
async def test_image_step_uses_image_provider():
    image = FakeProvider("image", ["Here is your generated image"])
    engine = make_engine(image_provider=image)
    output = await engine.run_steps([{"type": "image", "params": {"prompt": "A {{context}}"}}], "cat")
    assert output == "Here is your generated image"
    assert image.calls == [[{"role": "user", "content": "A cat"}]]


@pytest.mark.asyncio
async def test_unknown_type_and_missing_params_are_skipped():
    provider = FakeProvider("fake", ["unused"])
    engine = make_engine(providers=[provider])
    steps = [
        {"type": "teleport"},
        {"type": "llm", "params": {}},
        {"type": "http_request", "params": {}},
    ]
    assert await engine.run_steps(steps, "unchanged") == "unchanged"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_code_returning_none_keeps_context():
    engine = make_engine()
    output = await engine.run_steps([{"type": "code", "params": {"code": "x = 1"}}], {"a": 1})
    assert json.loads(output) == {"a": 1}


@pytest.mark.asyncio
async def test_execute_loads_workflow_once():
    calls = []
    workflow = Workflow(id=7, name="Stored", steps=parse_steps([{"type": "code", "code": "return 'stored'"}]))

    def loader(workflow_id):
        calls.append(workflow_id)
        return workflow if workflow_id == 7 else None

    engine = make_engine()
    assert await engine.execute(7, loader=loader) == "stored"
    assert calls == [7]

    with pytest.raises(WorkflowNotFound):
        await engine.execute(8, loader=loader)


@pytest.mark.asyncio
async def test_run_workflow_direct_result_shapes():
    engine = make_engine(sleep=no_sleep)

    ok = await run_workflow_direct([{"type": "trigger"}], "hello", engine=engine)
    assert ok == {"success": True, "output": "hello"}

    empty = await run_workflow_direct([], engine=engine)
    assert empty["success"] is False
    assert empty["error"]["type"] == "EmptyWorkflow"

    failed = await run_workflow_direct(
        [{"type": "trigger"}, {"type": "code", "params": {"code": "raise ValueError('bad')"}}],
        engine=engine,
    )
    assert failed["success"] is False
    assert failed["error"]["step_index"] == 2
    assert failed["error"]["step_type"] == "code"
    assert failed["error"]["type"] == "CodeExecutionError"
    assert "bad" in failed["error"]["message"]


@pytest.mark.asyncio
async def test_malformed_params_are_skipped_not_fatal():
    engine = make_engine()
    result = await run_workflow_direct(
        [
            {"type": "trigger"},
            {"type": "code", "params": "return 1"},
            {"type": "code", "params": {"code": "return 'ok'"}},
        ],
        engine=engine,
    )
    assert result == {"success": True, "output": "ok"}

    only_bad = await run_workflow_direct([{"type": "code", "params": "x"}], engine=engine)
    assert only_bad["success"] is False
    assert only_bad["error"]["type"] == "EmptyWorkflow"
