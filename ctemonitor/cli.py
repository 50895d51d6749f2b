"""Command line interface for running the CT-e monitor."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from ctemonitor.app import MonitorApp
from ctemonitor.config import load_config
from ctemonitor.errors import ConnectivityError, StoreError
from ctemonitor.logging_setup import configure_logging
from ctemonitor.store import get_record_store

app = typer.Typer(help="CLI for the CT-e document monitor")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to a YAML config file")


@app.callback()
def main() -> None:
    """ctemonitor CLI entry point."""
    pass


@app.command("run")
def run(config: Optional[Path] = ConfigOption) -> None:
    """
    Run the monitor until SIGINT/SIGTERM.

    Connects to the record store, polls it for pending CT-e documents,
    relocates their XML and watches for the processed counterpart.

    Example:
        ctemonitor run
        ctemonitor run --config ./config.yaml
    """
    cfg = load_config(str(config) if config else None)
    configure_logging(cfg.logging)
    monitor_app = MonitorApp(cfg)

    async def _main() -> int:
        await monitor_app.initialize()
        return await monitor_app.run()

    try:
        code = asyncio.run(_main())
    except ConnectivityError as e:
        typer.secho(f"Initialization failed: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    raise typer.Exit(code=code)


@app.command("check")
def check(config: Optional[Path] = ConfigOption) -> None:
    """
    Run a single tick and one processed-file scan, then exit.

    Example:
        ctemonitor check
    """
    cfg = load_config(str(config) if config else None)
    monitor_app = MonitorApp(cfg)

    async def _once() -> None:
        try:
            await monitor_app.initialize()
            await monitor_app.monitor.check_database()
            await monitor_app.executor.check_processed_files()
        finally:
            monitor_app.executor.cleanup()
            await monitor_app.store.close()

    try:
        asyncio.run(_once())
    except ConnectivityError as e:
        typer.secho(f"Store unreachable: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Processed: {monitor_app.monitor.processed_count}")


@app.command("stats")
def stats(config: Optional[Path] = ConfigOption) -> None:
    """Print the record store counters."""
    store = get_record_store(config=load_config(str(config) if config else None))

    async def _stats():
        try:
            return await store.get_stats()
        finally:
            await store.close()

    try:
        result = asyncio.run(_stats())
    except (ConnectivityError, StoreError) as e:
        typer.secho(f"Could not read stats: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Total={result.total}\tPending={result.pending}\t"
        f"Emitted={result.completed}\tCancelled={result.cancelled}"
    )


@app.command("health")
def health(config: Optional[Path] = ConfigOption) -> None:
    """Probe the record store."""
    store = get_record_store(config=load_config(str(config) if config else None))

    async def _probe():
        try:
            return await store.health_check()
        finally:
            await store.close()

    result = asyncio.run(_probe())
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("insert-test")
def insert_test(
    data: Optional[str] = typer.Option(None, help="JSON object merged into 'dados'"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """
    Insert a pending test record.

    Example:
        ctemonitor insert-test --data '{"numero_cte": "3525..."}'
    """
    try:
        payload = json.loads(data) if data else {}
    except json.JSONDecodeError as e:
        typer.secho(f"Invalid JSON: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    store = get_record_store(config=load_config(str(config) if config else None))

    async def _insert():
        try:
            return await store.insert_test_record(payload)
        finally:
            await store.close()

    try:
        record_id = asyncio.run(_insert())
    except StoreError as e:
        typer.secho(f"Insert failed: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Inserted test record {record_id}")
