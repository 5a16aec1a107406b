"""Click CLI entry point for rigmerge."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from rigmerge import __version__
from rigmerge.batch import load_batch, run_batch
from rigmerge.errors import RigMergeError
from rigmerge.exporter import export_rig, read_rig
from rigmerge.inspection import inspect_rig, render_text
from rigmerge.loader import ProgressCallback
from rigmerge.manifest import build_manifest, write_manifest
from rigmerge.warning_policy import WARNING_CODES, WarningPolicy, parse_code_list

_BATCH_SUFFIXES = (".batch.yaml", ".batch.yml", ".yaml", ".yml")

_CODES_HELP = "; ".join(f"{code} {text}" for code, text in sorted(WARNING_CODES.items()))


def _policy_from_options(
    warn_as_error: str | None, suppress_warning: str | None
) -> WarningPolicy | None:
    if not warn_as_error and not suppress_warning:
        return None
    try:
        return WarningPolicy(
            warn_as_error=parse_code_list(warn_as_error or ""),
            suppress=parse_code_list(suppress_warning or ""),
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from e


def _archive_path_for(batch_file: Path) -> Path:
    """``walk.batch.yaml`` -> ``walk.npz`` next to the batch file."""
    name = batch_file.name
    for suffix in _BATCH_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return batch_file.with_name(f"{name}.npz")


def _stderr_progress(quiet: bool) -> ProgressCallback | None:
    if quiet:
        return None
    return lambda message: click.echo(message, err=True)


@click.group()
@click.version_option(version=__version__, prog_name="rigmerge")
def main() -> None:
    """Rigmerge: consolidate rigged scenes into one validated rig."""


@main.command()
@click.argument("batch_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Rig archive to write. Defaults to the batch name with an .npz extension.",
)
@click.option(
    "--warn-as-error",
    "warn_as_error",
    default=None,
    help=f"Comma-separated warning codes that abort the merge ({_CODES_HELP}).",
)
@click.option(
    "--suppress-warning",
    "suppress_warning",
    default=None,
    help="Comma-separated warning codes to silence.",
)
@click.option(
    "--emit-manifest",
    "emit_manifest",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a JSON provenance manifest to this path.",
)
@click.option("-q", "--quiet", is_flag=True, default=False, help="Do not print progress.")
def merge(
    batch_file: Path,
    output: Path | None,
    warn_as_error: str | None,
    suppress_warning: str | None,
    emit_manifest: Path | None,
    quiet: bool,
) -> None:
    """Merge the scenes listed in BATCH_FILE into one rig archive."""
    policy = _policy_from_options(warn_as_error, suppress_warning)
    output = output or _archive_path_for(batch_file)

    try:
        batch = load_batch(batch_file)
        rig = run_batch(batch, warning_policy=policy, progress=_stderr_progress(quiet))
        export_rig(rig, output)
        if emit_manifest is not None:
            manifest = build_manifest(
                batch_path=batch_file,
                batch=batch,
                rig=rig,
                output_path=output,
                command_args=sys.argv[1:],
            )
            write_manifest(manifest, emit_manifest)
    except RigMergeError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Merged: {output}")


@main.command()
@click.argument("rig_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Inspection output format.",
)
@click.option(
    "--subject",
    type=int,
    default=0,
    show_default=True,
    help="Subject whose bind pose is reported.",
)
def inspect(rig_file: Path, output_format: str, subject: int) -> None:
    """Summarize a merged rig archive."""
    try:
        rig = read_rig(rig_file)
    except RigMergeError as e:
        raise click.ClickException(str(e)) from e

    if not 0 <= subject < rig.subject_count:
        raise click.UsageError(
            f"--subject must be between 0 and {rig.subject_count - 1}, got {subject}"
        )

    payload = inspect_rig(rig, subject=subject)
    if output_format == "json":
        click.echo(json.dumps(payload, indent=2))
    else:
        click.echo(render_text(payload), nl=False)
