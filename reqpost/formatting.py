"""reqpost formatting - CLI rendering of responses, tests and script logs."""

import json
from typing import Any

from reqpost.models import ApiResponse, TestResult


def format_response_data(data: Any, content_type: str = "") -> str:
    """Pretty-print a response body: strings as-is, everything else as JSON."""
    if data is None or data == "":
        return ""
    if isinstance(data, str):
        return data
    try:
        return json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(data)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_test_results(results: list[TestResult]) -> str:
    """One line per test plus a summary line."""
    lines = []
    passed = 0
    for r in results:
        if r.passed:
            passed += 1
            lines.append(f"  PASS {r.name}")
        else:
            lines.append(f"  FAIL {r.name}: {r.message}")
    lines.append(f"{passed}/{len(results)} passed")
    return "\n".join(lines)


def format_response(
    response: ApiResponse,
    verbose: bool = False,
    raw: bool = False,
    logs: list[str] | None = None,
) -> str:
    """Format a response for CLI output.

    Default layout:
        STATUS: 200 OK
        TIME: 45ms
        SIZE: 120 B
        BODY:
        {...}
        TESTS:
          PASS status is 200
        1/1 passed
    """
    if raw:
        return format_response_data(response.data, response.content_type)

    lines: list[str] = []
    status = f"{response.status} {response.status_text}".rstrip()
    lines.append(f"STATUS: {status}")
    lines.append(f"TIME: {response.time}ms")
    lines.append(f"SIZE: {format_size(response.size)}")

    if verbose and response.headers:
        lines.append("HEADERS:")
        for key, value in response.headers.items():
            lines.append(f"  {key}: {value}")

    body = format_response_data(response.data, response.content_type)
    if body:
        lines.append("BODY:")
        lines.append(body)

    if response.test_results is not None:
        lines.append("TESTS:")
        lines.append(format_test_results(response.test_results))

    if logs:
        lines.append("LOGS:")
        lines.extend(f"  {line}" for line in logs)

    return "\n".join(lines)
