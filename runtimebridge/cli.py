import asyncio
import json
from pathlib import Path
from typing import Optional

import httpx
import typer
import uvicorn

from runtimebridge.supervisor.config import CONFIG_PATH, load_settings
from runtimebridge.supervisor.pairing import PairingGuard

app = typer.Typer(help="Supervise an agent runtime process and bridge it to HTTP clients.")


def _bridge_url(host: str, port: int) -> str:
    return f"http://{host}:{port}/bridge-api"


def _settings_or_exit(config: Path):
    try:
        return load_settings(config)
    except ValueError as exc:
        typer.echo(f"Invalid configuration: {exc}")
        raise typer.Exit(code=1)


def _error_text(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text
    if isinstance(detail, dict):
        return str(detail.get("error") or detail)
    return str(detail or response.text)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (defaults to config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (defaults to config)"),
    config: Path = typer.Option(CONFIG_PATH, "--config", help="Path to config.json"),
):
    """Run the bridge server in the foreground."""
    from runtimebridge.supervisor.app import create_app

    settings = _settings_or_exit(config)
    bind_host = host or settings.host
    bind_port = port or settings.port
    typer.echo(f"Starting runtime bridge on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(settings), host=bind_host, port=bind_port, log_level=settings.log_level.lower())


@app.command()
def status(
    config: Path = typer.Option(CONFIG_PATH, "--config"),
    json_output: bool = typer.Option(False, "--json", help="Print raw status payload"),
):
    """Show runtime and pairing status of a running bridge."""
    settings = _settings_or_exit(config)
    try:
        response = httpx.get(f"{_bridge_url(settings.host, settings.port)}/health", timeout=5.0)
    except httpx.ConnectError:
        typer.echo("Bridge: NOT RESPONDING (Connection refused)")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        typer.echo(f"Bridge: UNHEALTHY ({_error_text(response)})")
        raise typer.Exit(code=1)

    data = response.json().get("data", {})
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return
    runtime = data.get("runtime", {})
    auth = data.get("auth", {})
    typer.echo("Bridge: RUNNING")
    typer.echo(f"  runtime: {runtime.get('status')} (pid={runtime.get('pid')}, restarts={runtime.get('restart_count')})")
    if runtime.get("last_error"):
        typer.echo(f"  last_error: {runtime.get('last_error')}")
    typer.echo(f"  pairing_required: {auth.get('pairing_required')}  paired: {auth.get('paired')}")
    if auth.get("pairing_code"):
        typer.echo(f"  pairing_code: {auth.get('pairing_code')}")
    for name, probe in (data.get("probes") or {}).items():
        state = "reachable" if probe.get("reachable") else "unreachable"
        typer.echo(f"  probe {name}: {probe.get('host')}:{probe.get('port')} {state}")


@app.command()
def pair(
    code: str = typer.Argument(..., help="Six-digit pairing code shown by the bridge"),
    config: Path = typer.Option(CONFIG_PATH, "--config"),
):
    """Exchange a pairing code for a bearer token."""
    settings = _settings_or_exit(config)
    try:
        response = httpx.post(
            f"{_bridge_url(settings.host, settings.port)}/pair",
            json={"code": code},
            timeout=5.0,
        )
    except httpx.ConnectError:
        typer.echo("Bridge is not running.")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        retry_after = response.headers.get("Retry-After")
        suffix = f" (retry after {retry_after}s)" if retry_after else ""
        typer.echo(f"Pairing failed: {_error_text(response)}{suffix}")
        raise typer.Exit(code=1)
    token = response.json()["data"]["token"]
    typer.echo("Paired. Store this token; it will not be shown again:")
    typer.echo(token)


@app.command()
def call(
    method: str = typer.Argument(..., help="Runtime command name, e.g. get_state"),
    params: str = typer.Option("{}", "--params", help="JSON object of command params"),
    token: str = typer.Option("", "--token", envvar="RUNTIME_BRIDGE_TOKEN", help="Bearer token from `pair`"),
    timeout: float = typer.Option(65.0, "--timeout"),
    config: Path = typer.Option(CONFIG_PATH, "--config"),
):
    """Send one raw command to the runtime through the bridge."""
    settings = _settings_or_exit(config)
    try:
        params_value = json.loads(params)
    except ValueError as exc:
        typer.echo(f"--params must be JSON: {exc}")
        raise typer.Exit(code=1)
    if not isinstance(params_value, dict):
        typer.echo("--params must be a JSON object")
        raise typer.Exit(code=1)

    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        response = httpx.post(
            f"{_bridge_url(settings.host, settings.port)}/rpc",
            json={"method": method, "params": params_value},
            headers=headers,
            timeout=timeout,
        )
    except httpx.ConnectError:
        typer.echo("Bridge is not running.")
        raise typer.Exit(code=1)
    except httpx.TimeoutException:
        typer.echo(f"Timed out waiting for {method}")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        typer.echo(f"Call failed ({response.status_code}): {_error_text(response)}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(response.json().get("result"), indent=2))


@app.command("reset-pairing")
def reset_pairing(
    config: Path = typer.Option(CONFIG_PATH, "--config"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
):
    """Revoke every stored bearer token so clients must pair again.

    Restart a running bridge afterwards; it caches tokens in memory.
    """
    settings = _settings_or_exit(config)
    if not yes:
        typer.confirm(f"Revoke all tokens in {settings.auth_store_path}?", abort=True)
    guard = PairingGuard(store_path=settings.auth_store_path, require_pairing=settings.require_pairing)
    asyncio.run(guard.reset())
    typer.echo("All bearer tokens revoked.")


if __name__ == "__main__":
    app()
