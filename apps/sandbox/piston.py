"""HTTP executor for the Piston code execution API (``POST /execute``)."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

import httpx

from devgrader.core.config import LanguageRuntime, SandboxConfig

from .executor import ExecutorTransportError, RawExecution

_ENTRYPOINTS: Dict[str, tuple[re.Pattern[str], str]] = {
    "kotlin": (re.compile(r"fun\s+main\s*\("), "fun main() {{\n{source}\n}}"),
}
# Piston reports a run killed at run_timeout with signal SIGKILL and no exit code.
_TIMEOUT_SIGNAL = "SIGKILL"


@dataclass
class PistonConfig:
    base_url: str
    api_key: str | None = None
    languages: Dict[str, LanguageRuntime] = field(default_factory=dict)
    compile_timeout_ms: int | None = None
    run_timeout_ms: int | None = None
    connect_timeout_s: float = 5.0

    @classmethod
    def from_sandbox_config(cls, config: SandboxConfig) -> "PistonConfig":
        return cls(
            base_url=config.api_base,
            api_key=config.api_key,
            languages=dict(config.languages),
            compile_timeout_ms=config.compile_timeout_ms,
            run_timeout_ms=config.run_timeout_ms,
            connect_timeout_s=config.connect_timeout_s,
        )


def prepare_source(source: str, language: str, runtime: LanguageRuntime | None) -> str:
    """Wrap bare snippets in an entrypoint for runtimes configured with ``wrap_entrypoint``."""

    if runtime is None or not runtime.wrap_entrypoint:
        return source
    entry = _ENTRYPOINTS.get(language)
    if entry is None:
        return source
    pattern, template = entry
    if pattern.search(source):
        return source
    return template.format(source=source)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _exit_code(stage: Dict[str, Any]) -> int | None:
    code = stage.get("code")
    if isinstance(code, bool):
        return None
    if isinstance(code, int):
        return code
    if isinstance(code, str) and code.strip().lstrip("-").isdigit():
        return int(code)
    return None


class PistonExecutor:
    """:class:`~apps.sandbox.executor.CodeExecutor` backed by a Piston instance."""

    def __init__(
        self,
        config: PistonConfig,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        if client is None:
            self._client = httpx.Client(
                base_url=config.base_url,
                timeout=httpx.Timeout(30.0, connect=config.connect_timeout_s),
            )
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    @property
    def config(self) -> PistonConfig:
        return self._config

    def execute(self, source: str, language: str, max_wait_ms: int) -> RawExecution:
        """Run ``source`` remotely and report what Piston observed."""

        tag = language.strip().lower()
        runtime = self._config.languages.get(tag)
        payload = self._build_payload(source, tag, runtime, max_wait_ms)
        timeout = httpx.Timeout(max_wait_ms / 1000.0, connect=self._config.connect_timeout_s)

        started = time.monotonic()
        try:
            response = self._client.post(
                "/execute",
                json=payload,
                headers=self._build_headers(),
                timeout=timeout,
            )
        except (httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            raise ExecutorTransportError(f"Piston API unreachable: {exc}") from exc
        except httpx.TimeoutException:
            return RawExecution(
                exit_status=None,
                elapsed_ms=(time.monotonic() - started) * 1000.0,
                timed_out=True,
                message=f"Sandbox did not answer within {max_wait_ms} ms",
            )
        except httpx.HTTPError as exc:
            raise ExecutorTransportError(f"Piston API unreachable: {exc}") from exc
        elapsed_ms = (time.monotonic() - started) * 1000.0

        data = self._decode(response)
        return self._parse_result(data, elapsed_ms)

    def list_runtimes(self) -> List[Dict[str, Any]]:
        """Return the runtimes the remote instance offers (``GET /runtimes``)."""

        try:
            response = self._client.get("/runtimes", headers=self._build_headers())
        except httpx.HTTPError as exc:
            raise ExecutorTransportError(f"Piston API unreachable: {exc}") from exc
        data = self._decode(response)
        return data if isinstance(data, list) else []

    def close(self) -> None:
        if getattr(self, "_owns_client", False):
            self._client.close()

    # ------------------------------------------------------------------

    def _build_payload(
        self,
        source: str,
        language: str,
        runtime: LanguageRuntime | None,
        max_wait_ms: int,
    ) -> Dict[str, Any]:
        filename = runtime.filename if runtime is not None else "main"
        payload: Dict[str, Any] = {
            "language": (runtime.runtime if runtime is not None and runtime.runtime else language),
            "version": runtime.version if runtime is not None else "*",
            "files": [{"name": filename, "content": prepare_source(source, language, runtime)}],
            "stdin": "",
            "args": [],
        }
        if self._config.run_timeout_ms is not None:
            payload["run_timeout"] = min(self._config.run_timeout_ms, max_wait_ms)
        if self._config.compile_timeout_ms is not None:
            payload["compile_timeout"] = self._config.compile_timeout_ms
        return payload

    def _build_headers(self) -> Dict[str, str] | None:
        if not self._config.api_key:
            return None
        return {"Authorization": self._config.api_key}

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            data = response.json()
        except (ValueError, httpx.DecodingError) as exc:
            raise ExecutorTransportError(
                f"Piston API returned non-JSON payload (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if response.is_error:
            message = data.get("message") if isinstance(data, dict) else None
            raise ExecutorTransportError(
                message or f"Piston API error: {response.status_code}",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _parse_result(data: Any, elapsed_ms: float) -> RawExecution:
        if not isinstance(data, dict):
            raise ExecutorTransportError("Piston API returned an unexpected payload")
        if data.get("message"):
            raise ExecutorTransportError(str(data["message"]))

        compile_stage = data.get("compile")
        if compile_stage is not None and not isinstance(compile_stage, dict):
            raise ExecutorTransportError("Piston API returned a malformed compile stage")
        if compile_stage and (_exit_code(compile_stage) not in (0, None) or compile_stage.get("signal")):
            compile_code = _exit_code(compile_stage)
            compile_signal = _text(compile_stage.get("signal")) or None
            compile_timed_out = compile_signal == _TIMEOUT_SIGNAL and compile_code is None
            return RawExecution(
                stdout=_text(compile_stage.get("stdout")),
                stderr=(_text(compile_stage.get("stderr")) or "Compilation failed").strip(),
                exit_status=compile_code,
                elapsed_ms=elapsed_ms,
                timed_out=compile_timed_out,
                signal=compile_signal,
                message="Compilation timed out" if compile_timed_out else "Compilation failed",
            )

        run_stage = data.get("run")
        if not isinstance(run_stage, dict):
            raise ExecutorTransportError("Piston API response is missing the run stage")
        signal = _text(run_stage.get("signal")) or None
        code = _exit_code(run_stage)
        timed_out = run_stage.get("status") == "TO" or (signal == _TIMEOUT_SIGNAL and code is None)
        wall_time = run_stage.get("wall_time")
        message = _text(run_stage.get("message")) or None
        return RawExecution(
            stdout=_text(run_stage.get("stdout")),
            stderr=_text(run_stage.get("stderr")),
            exit_status=code,
            elapsed_ms=float(wall_time) if isinstance(wall_time, (int, float)) else elapsed_ms,
            timed_out=timed_out,
            signal=signal,
            message=message if timed_out or code not in (0, None) else None,
        )

    def __enter__(self) -> "PistonExecutor":  # pragma: no cover - convenience
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - convenience
        self.close()


__all__ = ["PistonConfig", "PistonExecutor", "prepare_source"]
