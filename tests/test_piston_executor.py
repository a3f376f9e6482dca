import json
from typing import Any, Dict

import httpx
import pytest

from apps.grader.models import ExecutionStatus
from apps.sandbox.executor import ExecutorTransportError, SandboxClient
from apps.sandbox.piston import PistonConfig, PistonExecutor, prepare_source
from devgrader.core.config import LanguageRuntime, SandboxConfig
from tests.mocks.piston_api import PistonAPIMock

KOTLIN = LanguageRuntime(filename="Main.kt", wrap_entrypoint=True)


def _config(**overrides: Any) -> PistonConfig:
    values: Dict[str, Any] = {
        "base_url": "https://piston.test/api/v2/piston",
        "api_key": None,
        "languages": {"kotlin": KOTLIN},
        "compile_timeout_ms": 10000,
        "run_timeout_ms": 3000,
    }
    values.update(overrides)
    return PistonConfig(**values)


def _executor(handler, **overrides: Any) -> PistonExecutor:
    transport = httpx.MockTransport(handler)
    client = httpx.Client(transport=transport, base_url="https://piston.test/api/v2/piston")
    return PistonExecutor(_config(**overrides), client=client)


def _run_payload(stdout: str = "", *, code: int | None = 0, signal: str | None = None, **extra: Any) -> Dict[str, Any]:
    run = {"stdout": stdout, "stderr": "", "code": code, "signal": signal, "output": stdout}
    run.update(extra)
    return {"language": "kotlin", "version": "1.8.20", "run": run}


def test_execute_posts_piston_payload() -> None:
    captured: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["payload"] = json.loads(request.content)
        captured["authorization"] = request.headers.get("authorization")
        return httpx.Response(200, json=_run_payload("55\n"))

    executor = _executor(handler, api_key="secret-token")
    source = "fun main() {\n    println(55)\n}\n"
    raw = executor.execute(source, "Kotlin", 2000)

    assert raw.stdout == "55\n"
    assert raw.exit_status == 0
    assert not raw.timed_out
    assert captured["method"] == "POST"
    assert captured["url"] == "https://piston.test/api/v2/piston/execute"
    assert captured["authorization"] == "secret-token"
    assert captured["payload"] == {
        "language": "kotlin",
        "version": "*",
        "files": [{"name": "Main.kt", "content": source}],
        "stdin": "",
        "args": [],
        "run_timeout": 2000,
        "compile_timeout": 10000,
    }


def test_unknown_language_passes_tag_through() -> None:
    captured: Dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json=_run_payload("hi"))

    _executor(handler).execute("print('hi')", "python", 5000)
    assert captured["payload"]["language"] == "python"
    assert captured["payload"]["files"][0]["name"] == "main"
    assert captured["payload"]["run_timeout"] == 3000


def test_kotlin_snippets_get_an_entrypoint() -> None:
    wrapped = prepare_source('println("hi")', "kotlin", KOTLIN)
    assert wrapped.startswith("fun main() {\n")
    assert wrapped.endswith("\n}")
    already = "fun main() { }"
    assert prepare_source(already, "kotlin", KOTLIN) == already
    assert prepare_source('println("hi")', "kotlin", None) == 'println("hi")'


def test_non_zero_exit_keeps_output() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = _run_payload("1\n2\n", code=1)
        payload["run"]["stderr"] = "java.lang.RuntimeException: Boom!"
        return httpx.Response(200, json=payload)

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.exit_status == 1
    assert raw.stdout == "1\n2\n"
    assert "Boom!" in raw.stderr


def test_compile_failure_reports_compiler_output() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "language": "kotlin",
                "version": "1.8.20",
                "compile": {"stdout": "", "stderr": "Main.kt:2:5: error: unresolved reference\n", "code": 1, "signal": None},
            },
        )

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.exit_status == 1
    assert raw.message == "Compilation failed"
    assert "unresolved reference" in raw.stderr
    assert not raw.timed_out


def test_killed_run_is_a_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_run_payload("1\n", code=None, signal="SIGKILL"))

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.timed_out


def test_run_status_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_run_payload("", code=None, status="TO", message="Timeout"))

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.timed_out
    assert raw.message == "Timeout"


def test_wall_time_is_preferred() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_run_payload("ok", wall_time=321))

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.elapsed_ms == 321.0


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"message": "Service unavailable"}),
        httpx.Response(400, json={"message": "runtime is unknown"}),
        httpx.Response(200, json={"message": "kotlin-9.9.9 runtime is unknown"}),
        httpx.Response(200, content=b"<html>bad gateway</html>"),
        httpx.Response(200, json={"language": "kotlin"}),
        httpx.Response(200, json={"language": "kotlin", "run": "oops"}),
        httpx.Response(200, json={"language": "kotlin", "compile": "oops", "run": {"stdout": "55", "code": 0}}),
        httpx.Response(200, json={"language": "kotlin", "compile": ["error"], "run": {"stdout": "55", "code": 0}}),
    ],
)
def test_error_responses_raise_transport_error(response: httpx.Response) -> None:
    executor = _executor(lambda request: response)
    with pytest.raises(ExecutorTransportError):
        executor.execute("src", "kotlin", 2000)


def test_connection_errors_raise_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExecutorTransportError):
        _executor(handler).execute("src", "kotlin", 2000)


def test_undecodable_body_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")

    with pytest.raises(ExecutorTransportError):
        _executor(handler).execute("src", "kotlin", 2000)


def test_redirect_loop_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("redirect loop", request=request)

    with pytest.raises(ExecutorTransportError):
        _executor(handler).execute("src", "kotlin", 2000)
    with pytest.raises(ExecutorTransportError):
        _executor(handler).list_runtimes()


def test_loosely_typed_run_fields_are_coerced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"language": "kotlin", "run": {"stdout": 55, "stderr": None, "code": "0"}})

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.stdout == "55"
    assert raw.stderr == ""
    assert raw.exit_status == 0


def test_malformed_payload_is_a_transport_error_for_the_sandbox_client() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"language": "kotlin", "compile": "oops", "run": _run_payload("55")["run"]})

    result = SandboxClient(_executor(handler)).execute("src", "kotlin", 2000)
    assert result.status is ExecutionStatus.TRANSPORT_ERROR
    assert result.retryable
    assert "compile stage" in (result.detail or "")


def test_read_timeout_is_a_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    raw = _executor(handler).execute("src", "kotlin", 2000)
    assert raw.timed_out
    assert "2000 ms" in (raw.message or "")


def test_http_status_is_carried_on_the_error() -> None:
    executor = _executor(lambda request: httpx.Response(429, json={"message": "Too many requests"}))
    with pytest.raises(ExecutorTransportError) as excinfo:
        executor.execute("src", "kotlin", 2000)
    assert excinfo.value.status_code == 429
    assert "Too many requests" in str(excinfo.value)


def test_list_runtimes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/runtimes")
        return httpx.Response(200, json=[{"language": "kotlin", "version": "1.8.20"}])

    assert _executor(handler).list_runtimes() == [{"language": "kotlin", "version": "1.8.20"}]


def test_from_sandbox_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PISTON_API_KEY", "from-env")
    config = PistonConfig.from_sandbox_config(SandboxConfig(api_base="http://localhost:2000/api/v2/piston/"))
    assert config.base_url == "http://localhost:2000/api/v2/piston"
    assert config.api_key == "from-env"
    assert config.languages["kotlin"].filename == "Main.kt"


def test_piston_mock_end_to_end_through_sandbox_client() -> None:
    mock_server = PistonAPIMock(token="secret-token")
    source = "fun main() { println(55) }"
    mock_server.respond(source, "55\n")
    executor = PistonExecutor(
        _config(base_url=mock_server.base_url, api_key="secret-token"),
        client=mock_server.build_httpx_client(),
    )
    try:
        result = SandboxClient(executor).execute(source, "kotlin", 5000)
        assert result.status is ExecutionStatus.COMPLETED
        assert result.stdout == "55\n"
        assert mock_server.requests[0]["authorization"] == "secret-token"

        mock_server.fail_next()
        failed = SandboxClient(executor).execute(source, "kotlin", 5000)
        assert failed.status is ExecutionStatus.TRANSPORT_ERROR
        assert failed.detail == "Service unavailable"

        mock_server.crash("fun main() { error(1) }", stdout="partial\n", stderr="IllegalStateException")
        crashed = SandboxClient(executor).execute("fun main() { error(1) }", "kotlin", 5000)
        assert crashed.status is ExecutionStatus.RUNTIME_ERROR
        assert crashed.stdout == "partial\n"
        assert crashed.exit_status == 1
    finally:
        mock_server.close()
