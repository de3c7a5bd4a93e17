"""CLI commands for imagesync."""

import asyncio
import json
import os
import signal
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from imagesync import __logo__, __version__
from imagesync.config.schema import Config
from imagesync.container import ServiceContainer
from imagesync.errors import ImageSyncError, OfflineError
from imagesync.images.formats import ImageSize, format_from_path

app = typer.Typer(
    name="imagesync",
    help=f"{__logo__} imagesync - offline-first image sync",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} imagesync v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """imagesync - offline-first image sync."""
    pass


def _build_container(config: Config) -> ServiceContainer:
    return ServiceContainer.from_config(config)


def _run_with_container(work):
    """Build the container, run ``work(container)`` and always close it."""
    from imagesync.config.loader import load_config

    async def run():
        container = _build_container(load_config())
        try:
            return await work(container)
        finally:
            await container.aclose()

    try:
        return asyncio.run(run())
    except OfflineError:
        raise
    except ImageSyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _format_ms(value: int | None) -> str:
    if not value:
        return ""
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(value / 1000))


# ============================================================================
# Config Commands
# ============================================================================


config_app = typer.Typer(help="Manage imagesync config")
app.add_typer(config_app, name="config")


@config_app.command("check")
def config_check(
    config: Path | None = typer.Option(None, "--config", help="Config path to validate"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail when unknown keys are detected (possible typos)",
    ),
):
    """Validate config JSON structure and schema."""
    from imagesync.config.loader import convert_keys, get_config_path
    from imagesync.config.validation import find_unknown_keys, load_json_file, normalize_config_data

    config_path = (config or get_config_path()).expanduser()
    if not config_path.exists():
        console.print(f"[red]Config file not found:[/red] {config_path}")
        raise typer.Exit(2)

    try:
        raw = load_json_file(config_path)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON:[/red] {exc}")
        raise typer.Exit(2) from exc
    except Exception as exc:
        console.print(f"[red]Failed to read config:[/red] {exc}")
        raise typer.Exit(2) from exc

    try:
        normalized = normalize_config_data(raw)
        cfg = Config.model_validate(convert_keys(normalized))
    except Exception as exc:
        console.print(f"[red]Schema validation failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    unknown = find_unknown_keys(raw, normalized)
    if unknown:
        console.print(f"[yellow]Unknown config keys detected ({len(unknown)}):[/yellow]")
        for item in unknown[:10]:
            console.print(f"  - {item}")
        if len(unknown) > 10:
            console.print(f"  - ... ({len(unknown) - 10} more)")
        if strict:
            raise typer.Exit(1)

    probe_host, probe_port = cfg.probe_target()
    console.print("[green]✓[/green] Config validation passed")
    console.print(f"path={config_path}")
    console.print(f"api={cfg.api.base_url} timeout={cfg.api.timeout_seconds}s upload_timeout={cfg.api.upload_timeout_seconds}s")
    console.print(
        f"sync=max_retries={cfg.sync.max_retries} "
        f"backoff={','.join(str(x) for x in cfg.sync.backoff_seconds)} "
        f"probe={probe_host}:{probe_port}"
    )


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Initialize imagesync configuration."""
    from imagesync.config.loader import get_config_path, load_config, save_config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        console.print("  [bold]y[/bold] = overwrite with defaults (existing values will be lost)")
        console.print("  [bold]N[/bold] = refresh config, keeping existing values and adding new fields")
        if typer.confirm("Overwrite?"):
            save_config(Config())
            console.print(f"[green]✓[/green] Config reset to defaults at {config_path}")
        else:
            save_config(load_config())
            console.print(f"[green]✓[/green] Config refreshed at {config_path} (existing values preserved)")
    else:
        save_config(Config())
        console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} imagesync is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Point [cyan]api.baseUrl[/cyan] in [cyan]{config_path}[/cyan] at your gateway")
    console.print("  2. Register this device: [cyan]imagesync auth register[/cyan]")


# ============================================================================
# Auth Commands
# ============================================================================


auth_app = typer.Typer(help="Manage device identity")
app.add_typer(auth_app, name="auth")


@auth_app.command("status")
def auth_status():
    """Show device registration and token freshness."""

    async def work(container: ServiceContainer):
        return container.auth.status_snapshot()

    snapshot = _run_with_container(work)
    if not snapshot["registered"]:
        console.print("Device: [dim]not registered[/dim]")
        return
    state = "[red]expired[/red]" if snapshot["expired"] else "[green]valid[/green]"
    console.print(f"Device: [cyan]{snapshot['device_id']}[/cyan]")
    console.print(f"Token: {state} until {snapshot['token_expiry']}")


@auth_app.command("register")
def auth_register():
    """Register this device with the gateway (rotates any existing identity)."""

    async def work(container: ServiceContainer):
        return await container.auth.register()

    credential = _run_with_container(work)
    console.print(f"[green]✓[/green] Registered device {credential.device_id}")
    console.print(f"token_expiry={credential.token_expiry.isoformat()}")


@auth_app.command("reset")
def auth_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Forget the stored device credential."""
    if not yes and not typer.confirm("Remove the stored device credential?"):
        raise typer.Exit()

    async def work(container: ServiceContainer):
        container.auth.reset()

    _run_with_container(work)
    console.print("[green]✓[/green] Device credential removed")


# ============================================================================
# Image Commands
# ============================================================================


images_app = typer.Typer(help="Manage local images")
app.add_typer(images_app, name="images")


@images_app.command("add")
def images_add(
    path: Path = typer.Argument(..., help="Image file to import"),
    upload: bool = typer.Option(False, "--upload", help="Upload right after import"),
):
    """Import an image into the local library."""
    source_path = path.expanduser()
    if not source_path.is_file():
        console.print(f"[red]File not found:[/red] {source_path}")
        raise typer.Exit(2)
    data = source_path.read_bytes()
    mime = format_from_path(source_path).mime_type

    async def work(container: ServiceContainer):
        asset = await container.library.add_image(data, mime=mime)
        if upload:
            source = await container.library.load_source(asset)
            asset = await container.uploads.upload_image(asset, source.image, original_bytes=source.data)
        return asset

    asset = _run_with_container(work)
    console.print(f"[green]✓[/green] Added {asset.asset_id} ({asset.original_format or 'unknown'})")
    if upload:
        console.print(f"remote_image_id={asset.remote_image_id}")


@images_app.command("list")
def images_list():
    """List images and their sync state."""

    async def work(container: ServiceContainer):
        return container.library.list_assets()

    assets = _run_with_container(work)
    if not assets:
        console.print("No images.")
        return

    table = Table(title="Images")
    table.add_column("Asset", style="cyan")
    table.add_column("Format")
    table.add_column("Upload")
    table.add_column("Retries", justify="right")
    table.add_column("Deletion")
    table.add_column("Remote")
    table.add_column("Uploaded")
    for asset in assets:
        table.add_row(
            asset.asset_id,
            asset.original_format or "",
            asset.upload_status.value,
            str(asset.upload_retry_count),
            asset.deletion_status.value,
            asset.remote_image_id or "",
            _format_ms(asset.uploaded_at_ms),
        )
    console.print(table)


@images_app.command("upload")
def images_upload(asset_id: str = typer.Argument(..., help="Asset id")):
    """Upload one image now, regardless of backoff."""

    async def work(container: ServiceContainer):
        asset = container.library.get_asset(asset_id)
        source = await container.library.load_source(asset)
        return await container.uploads.upload_image(asset, source.image, original_bytes=source.data)

    asset = _run_with_container(work)
    console.print(f"[green]✓[/green] Uploaded {asset.asset_id} remote_image_id={asset.remote_image_id}")


@images_app.command("delete")
def images_delete(asset_id: str = typer.Argument(..., help="Asset id")):
    """Delete an image locally and remotely (queued while offline)."""

    async def work(container: ServiceContainer):
        asset = container.library.get_asset(asset_id)
        await container.monitor.check_now()
        await container.deletions.delete_image(asset)

    try:
        _run_with_container(work)
    except OfflineError as e:
        console.print(f"[yellow]Offline:[/yellow] deletion of {asset_id} queued for when the gateway is reachable")
        raise typer.Exit(3) from e
    console.print(f"[green]✓[/green] Deleted {asset_id}")


@images_app.command("fetch")
def images_fetch(
    asset_id: str = typer.Argument(..., help="Asset id"),
    size: ImageSize = typer.Option(ImageSize.MEDIUM, "--size", "-s", help="Derivative size"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the bytes"),
):
    """Write one derivative of an image to a file."""

    async def work(container: ServiceContainer):
        asset = container.library.get_asset(asset_id)
        return await container.library.get_image(asset, size)

    data = _run_with_container(work)
    if data is None:
        console.print(f"[yellow]No {size.value} image available for {asset_id}[/yellow]")
        raise typer.Exit(1)
    target = output.expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    console.print(f"[green]✓[/green] Wrote {len(data)} bytes to {target}")


# ============================================================================
# Sync Commands
# ============================================================================


sync_app = typer.Typer(help="Retry failed uploads and drain queued deletions")
app.add_typer(sync_app, name="sync")


@sync_app.command("run")
def sync_run():
    """Run one sync scan and exit."""

    async def work(container: ServiceContainer):
        recovered = container.scheduler.recover_interrupted()
        await container.monitor.check_now()
        summary = await container.scheduler.run_once()
        summary["recovered"] = recovered
        return summary

    summary = _run_with_container(work)
    console.print_json(data=summary)


@sync_app.command("serve")
def sync_serve():
    """Run the sync scheduler until interrupted."""

    async def work(container: ServiceContainer):
        stop_event = asyncio.Event()

        def _request_stop() -> None:
            stop_event.set()

        if os.name != "nt":
            signal.signal(signal.SIGINT, lambda *_: _request_stop())
            signal.signal(signal.SIGTERM, lambda *_: _request_stop())

        await container.scheduler.start()
        console.print(
            f"[green]✓[/green] Sync scheduler running "
            f"(scan every {container.scheduler.interval_seconds:.0f}s, Ctrl+C to stop)"
        )
        try:
            await stop_event.wait()
        finally:
            await container.scheduler.stop()

    _run_with_container(work)
    console.print("Sync scheduler stopped.")


# ============================================================================
# Cache Commands
# ============================================================================


cache_app = typer.Typer(help="Manage the derivative cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("clear")
def cache_clear():
    """Clear in-memory and purgeable on-disk caches (thumbnails are kept)."""

    async def work(container: ServiceContainer):
        await container.cache.clear_cache()
        return container.cache.cache_dir

    cache_dir = _run_with_container(work)
    console.print(f"[green]✓[/green] Cleared {cache_dir}")


if __name__ == "__main__":
    app()
