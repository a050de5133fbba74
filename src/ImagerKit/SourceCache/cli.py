"""Operational CLI for the source cache.

Commands:
- ``resolve REF``  print the resolved cache paths of a reference as JSON
- ``fetch REF``    ensure a local copy exists and print its path
- ``check PATH``   report whether a cached file is still reusable
- ``config ...``   print-merged, validate, export-schema, defaults

Example:
    imagerkit-cache --config imager.yaml fetch https://example.com/a.jpg
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

import typer

from .config.loader import export_config_schema, load_config
from .config.models import SourceCacheConfig
from .errors import SourceCacheError
from .logging_utils import setup_logging
from .resolver import SourceResolver
from .validity import MIN_VALID_BYTES, needs_refresh

LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    name="imagerkit-cache",
    help="Resolve image references and manage their local cache copies",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration inspection and validation", no_args_is_help=True)
app.add_typer(config_app, name="config")


class _State:
    config_file: Optional[str] = None


_state = _State()


def _load(config_file: Optional[str]) -> SourceCacheConfig:
    try:
        return load_config(config_file)
    except ValueError as e:
        typer.secho(f"Error loading config: {e}", fg="red", err=True)
        raise typer.Exit(2)


@app.callback()
def main(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Config file path (YAML/JSON)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Console log level"),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write rotating JSONL logs to this directory"
    ),
) -> None:
    _state.config_file = config_file
    setup_logging(level=log_level, log_dir=log_dir, json_logs=log_dir is not None)


@app.command("resolve")
def cmd_resolve(reference: str = typer.Argument(..., help="URL or path of the image")) -> None:
    """Print the cache location of REFERENCE without fetching it."""

    cfg = _load(_state.config_file)
    with SourceResolver(cfg) as resolver:
        try:
            source = resolver.resolve(reference)
        except SourceCacheError as e:
            typer.secho(f"Cannot resolve {reference!r}: {e}", fg="red", err=True)
            raise typer.Exit(1)
        output = source.to_dict()
        output["requires_fetch"] = source.requires_fetch
        output["safe_file_format"] = resolver.is_safe_file_format(source)
    typer.echo(json.dumps(output, indent=2))


@app.command("fetch")
def cmd_fetch(reference: str = typer.Argument(..., help="URL or path of the image")) -> None:
    """Make sure REFERENCE has a usable local copy and print its path."""

    cfg = _load(_state.config_file)
    with SourceResolver(cfg) as resolver:
        try:
            path = resolver.get_local_copy(reference)
        except SourceCacheError as e:
            typer.secho(f"Fetch failed for {reference!r}: {e}", fg="red", err=True)
            raise typer.Exit(1)
    typer.echo(str(path))


@app.command("check")
def cmd_check(path: Path = typer.Argument(..., help="Cached file to inspect")) -> None:
    """Report size, age and reuse status of a cached file."""

    cfg = _load(_state.config_file)
    report = {
        "path": str(path),
        "exists": path.exists(),
        "size_bytes": None,
        "age_s": None,
        "min_valid_bytes": MIN_VALID_BYTES,
        "cache_ttl_s": cfg.cache_ttl_s,
        "needs_refresh": needs_refresh(path, cfg.cache_ttl_s),
    }
    if report["exists"]:
        stat = os.stat(path)
        report["size_bytes"] = stat.st_size
        report["age_s"] = round(time.time() - stat.st_mtime, 3)
    typer.echo(json.dumps(report, indent=2))
    if report["needs_refresh"]:
        raise typer.Exit(1)


@config_app.command("print-merged")
def cmd_config_print_merged() -> None:
    """Print the configuration after file, environment and override precedence."""

    cfg = _load(_state.config_file)
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))


@config_app.command("validate")
def cmd_config_validate() -> None:
    """Validate the configuration; exit code 0 if valid, 2 if not."""

    cfg = _load(_state.config_file)
    typer.secho("Config is valid", fg="green")
    typer.echo(f"   Config hash: {cfg.config_hash()[:16]}...")


@config_app.command("export-schema")
def cmd_config_export_schema(
    output_file: Path = typer.Option(
        Path("sourcecache-schema.json"), "--output", "-o", help="Output file path for JSON Schema"
    ),
) -> None:
    """Export the JSON Schema of the configuration for editor integration."""

    try:
        output_file.write_text(json.dumps(export_config_schema(), indent=2), encoding="utf-8")
    except OSError as e:
        typer.secho(f"Error exporting schema: {e}", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho(f"Schema exported to {output_file}", fg="green")


@config_app.command("defaults")
def cmd_config_defaults() -> None:
    """Show default configuration values."""

    typer.echo(json.dumps(SourceCacheConfig().model_dump(mode="json"), indent=2))


__all__ = ["app"]
