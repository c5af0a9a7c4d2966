from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import subprocess
from typing import Callable

from mergetrain.observability import log_event


LOGGER = logging.getLogger("mergetrain.transport")


@dataclass(frozen=True)
class ApiRequest:
    method: str
    path: str
    payload: dict[str, object] | None = None
    headers: tuple[tuple[str, str], ...] = ()

    def with_header(self, name: str, value: str) -> ApiRequest:
        kept = tuple((key, val) for key, val in self.headers if key.lower() != name.lower())
        return ApiRequest(
            method=self.method,
            path=self.path,
            payload=self.payload,
            headers=(*kept, (name, value)),
        )


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    payload: object = None


Send = Callable[[ApiRequest], ApiResponse]


class GitHubApiError(RuntimeError):
    """GitHub answered with a non-2xx status (304 included)."""

    def __init__(self, status_code: int, headers: dict[str, str], message: str) -> None:
        super().__init__(f"GitHub API request failed with status {status_code}: {message}")
        self.status_code = status_code
        self.headers = headers


class GitHubTransportError(RuntimeError):
    """No HTTP response could be obtained from the gh CLI."""


class GhApiTransport:
    def __init__(self, *, gh_binary: str = "gh") -> None:
        self._gh_binary = gh_binary

    def __call__(self, request: ApiRequest) -> ApiResponse:
        method = request.method.upper()
        cmd = [self._gh_binary, "api", "--method", method, "--include"]
        for name, value in request.headers:
            cmd.extend(["--header", f"{name}: {value}"])
        stdin_payload: str | None = None
        if request.payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(request.payload)
        cmd.append(request.path)

        proc = subprocess.run(
            cmd,
            input=stdin_payload,
            text=True,
            capture_output=True,
            check=False,
        )
        try:
            status_code, headers, body = _parse_http_response(proc.stdout)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "github_transport_failed",
                method=method,
                path=request.path,
                exit_code=proc.returncode,
                stderr=_preview_for_log(proc.stderr),
            )
            raise GitHubTransportError(
                f"gh api {method} {request.path} produced no HTTP response: {exc}"
            ) from exc

        if status_code < 200 or status_code >= 300:
            if status_code != 304:
                log_event(
                    LOGGER,
                    "github_request_failed",
                    method=method,
                    path=request.path,
                    status_code=status_code,
                    body=_preview_for_log(body),
                )
            raise GitHubApiError(status_code, headers, body.strip() or "<empty>")

        payload: object = None
        if body.strip():
            payload = json.loads(body)
        return ApiResponse(status_code=status_code, headers=headers, payload=payload)


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    # gh may print interim responses; the last status line wins.
    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."
