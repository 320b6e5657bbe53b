"""JSON envelope output for CLI commands.

Every command except ``stream`` prints exactly one JSON document to stdout:

    {"success": bool, "data": {...}, "error": str | null, "meta": {"version": "response-v2"}}

``stream`` writes raw text chunks and only falls back to an error envelope
when the request or the stream fails.
"""

import json
import sys
from typing import Any, Mapping, NoReturn, Optional

import click

RESPONSE_VERSION = "response-v2"


def _emit(payload: Mapping[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def emit_success(
    data: Optional[Mapping[str, Any]] = None,
    *,
    telemetry: Optional[Mapping[str, Any]] = None,
) -> None:
    """Print a success envelope."""
    meta: dict = {"version": RESPONSE_VERSION}
    if telemetry:
        meta["telemetry"] = dict(telemetry)
    _emit({"success": True, "data": dict(data or {}), "error": None, "meta": meta})


def emit_error(
    message: str,
    *,
    code: str,
    error_type: str,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> NoReturn:
    """Print an error envelope and exit with status 1."""
    data: dict = {"error_code": code, "error_type": error_type}
    if remediation:
        data["remediation"] = remediation
    if details:
        data["details"] = dict(details)
    _emit({"success": False, "data": data, "error": message, "meta": {"version": RESPONSE_VERSION}})
    sys.exit(1)
