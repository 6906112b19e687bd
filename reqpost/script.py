"""reqpost script - pre-request and test script execution.

Scripts are Python source run in a fresh namespace that only binds ``pm``,
``console`` and the interpreter builtins:

    pm.test("status is 200", lambda: pm.expect(pm.response.code).to.equal(200))
    pm.environment.set("token", pm.response.body["access_token"])

This is scoping, not a sandbox. Scripts run in-process with the same
privileges as the caller and there is no execution timeout.
"""

import builtins
import json
import logging
from typing import Any

from reqpost.assertions import AssertionFailure, Expectation, expect
from reqpost.models import ApiRequest, ApiResponse, BodyType, HttpMethod, ScriptResult, TestResult
from reqpost.variables import StaticVariables, VariableSource

logger = logging.getLogger(__name__)

_CONSOLE_METHODS = (
    "log",
    "info",
    "warn",
    "error",
    "debug",
    "table",
    "group",
    "groupEnd",
    "time",
    "timeEnd",
    "count",
    "dir",
    "trace",
)


# ── console ──────────────────────────────────────────────────────────────


def _stringify(arg: Any) -> str:
    if isinstance(arg, dict | list | tuple):
        try:
            return json.dumps(arg, default=str)
        except (TypeError, ValueError):
            return str(arg)
    return str(arg)


class ConsoleProxy:
    """console object handed to scripts; every call appends one log line."""

    def __init__(self, logs: list[str]):
        self.logs = logs
        for name in _CONSOLE_METHODS:
            setattr(self, name, self._append)
        setattr(self, "assert", self.assert_)

    def _append(self, *args: Any) -> None:
        line = " ".join(_stringify(a) for a in args)
        logger.debug("script console: %s", line)
        self.logs.append(line)

    def clear(self) -> None:
        self.logs.clear()

    def assert_(self, condition: Any, *args: Any) -> None:
        if not condition:
            self._append("Assertion failed:", *args)


# ── pm API ───────────────────────────────────────────────────────────────


class VariableScope:
    """pm.environment / pm.globals over an in-memory snapshot."""

    def __init__(self, values: dict[str, str]):
        self._values = dict(values)

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def unset(self, key: str) -> None:
        self._values.pop(key, None)

    def toObject(self) -> dict[str, Any]:  # noqa: N802
        return dict(self._values)


class ScriptVariables:
    """pm.variables: reads environment then globals, writes the environment."""

    def __init__(self, environment: VariableScope, globals_: VariableScope):
        self._environment = environment
        self._globals = globals_

    def get(self, key: str) -> Any:
        value = self._environment.get(key)
        if value is None:
            value = self._globals.get(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._environment.set(key, value)

    def unset(self, key: str) -> None:
        self._environment.unset(key)


class ScriptRequest:
    """pm.request: a detached copy of the request being run."""

    def __init__(self, request: ApiRequest):
        self.method = HttpMethod(request.method).value
        self.url = request.url
        self.headers = {h.key: h.value for h in request.headers if h.enabled and h.key}
        body: Any = request.body
        if request.body and request.body_type == BodyType.JSON:
            try:
                body = json.loads(request.body)
            except (json.JSONDecodeError, ValueError):
                body = request.body
        self.body = body

    def getUrl(self) -> str:  # noqa: N802
        return self.url

    def getHeader(self, key: str) -> str | None:  # noqa: N802
        return self.headers.get(key)

    def setHeader(self, key: str, value: str) -> None:  # noqa: N802
        self.headers[key] = value

    def getBody(self) -> Any:  # noqa: N802
        return self.body

    def setBody(self, body: Any) -> None:  # noqa: N802
        self.body = body


class ScriptResponse:
    """pm.response in test scripts."""

    def __init__(self, response: ApiResponse):
        self.code = response.status
        self.status = response.status_text
        self.headers = dict(response.headers)
        self.body = response.data
        self.time = response.time
        self.size = response.size

    def json(self) -> Any:
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body

    def text(self) -> str:
        if self.body is None:
            return ""
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)


class ScriptInfo:
    """pm.info (read-only)."""

    __slots__ = ("_name", "_id")

    def __init__(self, request_name: str, request_id: str):
        self._name = request_name
        self._id = request_id

    @property
    def requestName(self) -> str:  # noqa: N802
        return self._name

    @property
    def requestId(self) -> str:  # noqa: N802
        return self._id


class Pm:
    """The ``pm`` object for pre-request scripts."""

    def __init__(
        self,
        request: ApiRequest,
        environment: dict[str, str],
        globals_: dict[str, str],
    ):
        self.request = ScriptRequest(request)
        self.environment = VariableScope(environment)
        self.globals = VariableScope(globals_)
        self.variables = ScriptVariables(self.environment, self.globals)
        self.info = ScriptInfo(request.name, request.id)

    def expect(self, actual: Any) -> Expectation:
        return expect(actual)


class TestPm(Pm):
    """The ``pm`` object for test scripts: adds response and test()."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        request: ApiRequest,
        response: ApiResponse,
        environment: dict[str, str],
        globals_: dict[str, str],
    ):
        super().__init__(request, environment, globals_)
        self.response = ScriptResponse(response)
        self.results: list[TestResult] = []

    def test(self, name: str, fn) -> None:
        """Run one named check; record exactly one TestResult."""
        try:
            passed = bool(fn())
        except AssertionFailure as e:
            self.results.append(
                TestResult(
                    name=name,
                    status="failed",
                    message=e.message,
                    expected=None if e.expected is None else str(e.expected),
                    actual=None if e.actual is None else str(e.actual),
                ),
            )
            return
        except (Exception, SystemExit) as e:  # noqa: BLE001
            self.results.append(TestResult(name=name, status="failed", message=_error_message(e)))
            return

        self.results.append(
            TestResult(
                name=name,
                status="passed" if passed else "failed",
                message="Passed" if passed else "Failed",
            ),
        )


# ── engine ───────────────────────────────────────────────────────────────


def _error_message(error: BaseException) -> str:
    if isinstance(error, SystemExit):
        # exit()/quit()/sys.exit() end the script, never the host process
        return "SystemExit" if error.code is None else f"SystemExit: {error.code}"
    return str(error) or type(error).__name__


def format_script_error(error: str, line: int | None = None) -> str:
    if line:
        return f"Script Error at line {line}: {error}"
    return f"Script Error: {error}"


def validate_script_syntax(script: str) -> dict:
    """Compile script without running it.

    Returns {"valid": True} or {"valid": False, "error": "..."}.
    """
    try:
        compile(script, "<script>", "exec")
    except SyntaxError as e:
        return {"valid": False, "error": format_script_error(e.msg, e.lineno)}
    except ValueError as e:
        return {"valid": False, "error": format_script_error(str(e))}
    return {"valid": True}


def _run(source: str, pm: Pm, console: ConsoleProxy, filename: str) -> None:
    code = compile(source, filename, "exec")
    namespace = {"__builtins__": builtins, "pm": pm, "console": console}
    exec(code, namespace)  # noqa: S102


class ScriptEngine:
    """Runs pre-request and test scripts against in-memory variable snapshots.

    Environment writes made by a script are returned to the caller, never
    written to the store.
    """

    def __init__(self, variables: VariableSource | None = None):
        self.variables = variables or StaticVariables()

    def _snapshots(self) -> tuple[dict[str, str], dict[str, str]]:
        return (
            self.variables.get_active_environment_variables(),
            self.variables.get_global_builtins(),
        )

    def run_pre_request(self, request: ApiRequest) -> ScriptResult:
        """Run request.pre_request_script; data is the resulting environment."""
        if not request.pre_request_script:
            return ScriptResult(success=True, data={})

        logs: list[str] = []
        console = ConsoleProxy(logs)
        environment, globals_ = self._snapshots()
        pm = Pm(request, environment, globals_)

        try:
            _run(request.pre_request_script, pm, console, "<pre-request-script>")
        except (Exception, SystemExit) as e:  # noqa: BLE001
            message = _error_message(e)
            logger.warning("Pre-request script for %r failed: %s", request.name, message)
            logs.append(f"Error: {message}")
            return ScriptResult(success=False, error=message, logs=logs)

        return ScriptResult(success=True, data=pm.environment.toObject(), logs=logs)

    def run_test(self, request: ApiRequest, response: ApiResponse) -> ScriptResult:
        """Run request.test_script; data is the TestResult list in call order.

        On a top-level error the results recorded so far are still returned.
        """
        if not request.test_script:
            return ScriptResult(success=True, data=[])

        logs: list[str] = []
        console = ConsoleProxy(logs)
        environment, globals_ = self._snapshots()
        pm = TestPm(request, response, environment, globals_)

        try:
            _run(request.test_script, pm, console, "<test-script>")
        except (Exception, SystemExit) as e:  # noqa: BLE001
            message = _error_message(e)
            logger.warning("Test script for %r failed: %s", request.name, message)
            logs.append(f"Error: {message}")
            return ScriptResult(success=False, data=pm.results, error=message, logs=logs)

        return ScriptResult(success=True, data=pm.results, logs=logs)
