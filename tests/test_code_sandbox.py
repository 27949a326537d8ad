from __future__ import annotations

import pytest

from stepflow.core.exceptions import CodeExecutionError
from stepflow.services.code_sandbox import InProcessCodeSandbox


@pytest.fixture
def sandbox():
    return InProcessCodeSandbox()


def test_returns_fragment_result(sandbox):
    assert sandbox.run("return {'msg': 'hi'}", {}) == {"msg": "hi"}


def test_input_accessors(sandbox):
    value = {"n": 2}
    assert sandbox.run("return _input.first()['json']['n'] * 10", value) == 20
    assert sandbox.run("return _input.item['json']", value) == value
    assert sandbox.run("return len(_input.all())", value) == 1
    assert sandbox.run("return _json['n']", value) == 2


def test_multiline_fragment_is_dedented(sandbox):
    code = """
        total = 0
        for n in _json['numbers']:
            total += n
        return {'total': total}
    """
    assert sandbox.run(code, {"numbers": [1, 2, 3]}) == {"total": 6}


def test_no_return_gives_none(sandbox):
    assert sandbox.run("x = 1", {}) is None
    assert sandbox.run("", {}) is None


def test_runtime_error_is_wrapped(sandbox):
    with pytest.raises(CodeExecutionError) as exc_info:
        sandbox.run("return 1 / 0", {})
    assert "Code execution failed" in str(exc_info.value)


def test_syntax_error_is_wrapped(sandbox):
    with pytest.raises(CodeExecutionError):
        sandbox.run("return {", {})


def test_builtins_outside_whitelist_are_unavailable(sandbox):
    with pytest.raises(CodeExecutionError):
        sandbox.run("return open('/etc/hostname').read()", {})
    with pytest.raises(CodeExecutionError):
        sandbox.run("import os\nreturn os.getcwd()", {})


def test_no_state_leaks_between_runs(sandbox):
    sandbox.run("global leaked\nleaked = 1\nreturn None", {})
    with pytest.raises(CodeExecutionError):
        sandbox.run("return leaked", {})
