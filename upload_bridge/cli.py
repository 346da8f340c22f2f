# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for the upload bridge.

Provides ``serve`` to run the bridge under waitress, and ``publish`` to
upload a file with a JSON-RPC request to a running bridge.

Usage::

    upload-bridge serve --upload-path /var/tmp/uploads --tokens tokens.json
    upload-bridge publish video.mp4 --url http://localhost:8080 --token abc \\
        --method publish --params '{"name": "x"}'

"""

from __future__ import annotations

import json
import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import httpx
import typer

from upload_bridge.auth import TokenAuthenticator, load_tokens
from upload_bridge.cache import QueryCache
from upload_bridge.http import FILE_FIELD_NAME, JSON_RPC_FIELD_NAME, make_wsgi_app
from upload_bridge.logging_utils import configure_logging
from upload_bridge.rpc import HttpRetryConfig
from upload_bridge.sentry import SentryReporter

_logger = logging.getLogger("upload_bridge.cli")


class LogFormat(StrEnum):
    """Log output format."""

    text = "text"
    json = "json"


app = typer.Typer(
    name="upload-bridge",
    help="Bridge multipart uploads to per-user JSON-RPC backends.",
    add_completion=False,
    no_args_is_help=True,
)


@app.command()
def serve(
    upload_path: Annotated[
        Path, typer.Option("--upload-path", envvar="UPLOAD_BRIDGE_UPLOAD_PATH", help="Root directory for uploads")
    ],
    tokens: Annotated[
        Path | None,
        typer.Option("--tokens", envvar="UPLOAD_BRIDGE_TOKENS", help="JSON file mapping auth tokens to users"),
    ] = None,
    host: Annotated[str, typer.Option("--host", help="Interface to listen on")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 8080,
    prefix: Annotated[str, typer.Option("--prefix", "-p", help="URL path prefix")] = "/api/v1",
    cache: Annotated[bool, typer.Option("--cache/--no-cache", help="Cache read-only backend responses")] = True,
    retries: Annotated[int, typer.Option("--retries", help="Retries for transient backend failures")] = 3,
    threads: Annotated[int, typer.Option("--threads", help="Worker threads")] = 4,
    backend_timeout: Annotated[
        float, typer.Option("--backend-timeout", help="Timeout in seconds for calls to user backends")
    ] = 30.0,
    log_level: Annotated[str, typer.Option("--log-level", help="Log level")] = "INFO",
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log output format")] = LogFormat.text,
    sentry_dsn: Annotated[
        str | None, typer.Option("--sentry-dsn", envvar="SENTRY_DSN", help="Sentry DSN for error reporting")
    ] = None,
) -> None:
    """Serve the bridge over HTTP."""
    import waitress

    configure_logging(log_level, log_format.value)

    reporter = None
    if sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(dsn=sentry_dsn)
        reporter = SentryReporter()

    try:
        table = load_tokens(tokens) if tokens is not None else {}
    except (OSError, ValueError) as e:
        typer.echo(f"Error: cannot load tokens: {e}", err=True)
        raise typer.Exit(1) from None

    with httpx.Client(timeout=backend_timeout) as client:
        wsgi_app = make_wsgi_app(
            upload_path,
            authenticate=TokenAuthenticator(table),
            prefix=prefix,
            cache=QueryCache() if cache else None,
            client=client,
            retry=HttpRetryConfig(max_retries=retries) if retries > 0 else None,
            reporter=reporter,
            logger=logging.getLogger("upload_bridge.publish"),
        )
        _logger.info("Serving on http://%s:%d%s/proxy", host, port, prefix)
        waitress.serve(wsgi_app, host=host, port=port, threads=threads, _quiet=True)


@app.command()
def publish(
    file: Annotated[Path, typer.Argument(help="File to upload", exists=True, dir_okay=False, readable=True)],
    url: Annotated[str, typer.Option("--url", "-u", help="Bridge base URL")],
    token: Annotated[str, typer.Option("--token", "-t", envvar="UPLOAD_BRIDGE_TOKEN", help="Auth token")],
    method: Annotated[str, typer.Option("--method", "-m", help="JSON-RPC method")] = "publish",
    params: Annotated[str | None, typer.Option("--params", help="JSON-RPC params as a JSON object")] = None,
    prefix: Annotated[str, typer.Option("--prefix", "-p", help="URL path prefix")] = "/api/v1",
    timeout: Annotated[float, typer.Option("--timeout", help="Request timeout in seconds")] = 300.0,
) -> None:
    """Upload FILE with a JSON-RPC request and print the response."""
    try:
        params_obj = json.loads(params) if params else {}
    except ValueError as e:
        raise typer.BadParameter(f"--params is not valid JSON: {e}") from None
    if not isinstance(params_obj, dict):
        raise typer.BadParameter("--params must be a JSON object")

    payload = json.dumps({"jsonrpc": "2.0", "method": method, "params": params_obj, "id": 1})
    endpoint = f"{url.rstrip('/')}{prefix}/proxy"
    try:
        with file.open("rb") as fh:
            resp = httpx.post(
                endpoint,
                files={FILE_FIELD_NAME: (file.name, fh)},
                data={JSON_RPC_FIELD_NAME: payload},
                headers={"Authorization": f"Bearer {token}"},
                timeout=timeout,
            )
    except httpx.HTTPError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        body = resp.json()
    except ValueError:
        typer.echo(f"Error: HTTP {resp.status_code}: {resp.text[:200]}", err=True)
        raise typer.Exit(1) from None

    typer.echo(json.dumps(body, indent=2))
    if not isinstance(body, dict) or "error" in body:
        raise typer.Exit(1)


def main() -> None:
    """Entry point for the ``upload-bridge`` console script."""
    app(prog_name="upload-bridge")


if __name__ == "__main__":
    sys.exit(main())
