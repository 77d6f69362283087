"""CLI entrypoint for vector-sync."""

from __future__ import annotations

import json
import os
from typing import Optional

import requests
import typer

app = typer.Typer(name="vsync", help="Vector sync command-line interface")
monitor_app = typer.Typer(name="monitor", help="Control the backup sweep loop")
app.add_typer(monitor_app, name="monitor")

DEFAULT_HOST = "http://127.0.0.1:3000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("VSYNC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=120, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def serve(
    bind: str = typer.Option("0.0.0.0", "--bind", help="Interface to listen on"),
    port: int = typer.Option(3000, "--port", help="Port to listen on"),
) -> None:
    """Run the HTTP service."""
    import uvicorn

    uvicorn.run("vector_sync.app:app", host=bind, port=port, log_config=None)


@app.command()
def sync(
    tenant_id: str = typer.Argument(..., help="Tenant identifier"),
    force: bool = typer.Option(False, "--force", help="Resync every record, ignoring the watermark"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Force a synchronization pass for one tenant."""
    resp = _request("POST", f"/tenants/{tenant_id}/sync", host=host, params={"force": str(force).lower()})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def status(
    tenant_id: str = typer.Argument(..., help="Tenant identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show the sync status of a tenant."""
    resp = _request("GET", f"/tenants/{tenant_id}/status", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@monitor_app.command("start")
def monitor_start(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Start the backup sweep loop."""
    resp = _request("POST", "/monitor/start", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@monitor_app.command("stop")
def monitor_stop(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Stop the backup sweep loop."""
    resp = _request("POST", "/monitor/stop", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@monitor_app.command("show")
def monitor_show(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Show whether the sweep loop is running."""
    resp = _request("GET", "/monitor", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def diagnose(
    record_id: str = typer.Argument(..., help="Record identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Inspect the stored vector of a record."""
    resp = _request("GET", f"/vectors/{record_id}/diagnosis", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def repair(
    record_id: str = typer.Argument(..., help="Record identifier"),
    tenant_id: str = typer.Option(..., "--tenant", help="Owning tenant"),
    placeholder: bool = typer.Option(False, "--placeholder", help="Store a constant vector instead of embedding"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Rewrite the vector of a record."""
    payload = {"tenant_id": tenant_id, "placeholder": placeholder}
    resp = _request("POST", f"/vectors/{record_id}/repair", host=host, json=payload)
    body = resp.json()
    typer.echo(json.dumps(body, indent=2))
    if not body.get("success"):
        raise typer.Exit(code=1)


@app.command("cancel-tasks")
def cancel_tasks(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Cancel background processing still running after its webhook timed out."""
    resp = _request("POST", "/tasks/cancel", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
