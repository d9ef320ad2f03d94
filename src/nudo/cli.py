"""nudo command line interface."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from nudo import __version__
from nudo.analyzer import AnalysisResult, analyze
from nudo.builder import BuildError, BuildSession
from nudo.config import ConfigError, NudoConfig, find_config, load_config, resolve_config
from nudo.errors import DiagnosticRenderer
from nudo.source import SourceText
from nudo.stubs import generate_stub


def _load(config_path: str | None, start: Path) -> NudoConfig:
    try:
        if config_path is not None:
            return load_config(Path(config_path))
        return resolve_config(start)
    except ConfigError as e:
        click.echo(f"error: invalid nudo.toml: {e}", err=True)
        raise SystemExit(1)


def _print_result(result: AnalysisResult, *, locations: bool) -> None:
    click.echo(f"{result.filename}:")
    if not result.signatures:
        click.echo("  (no annotated functions)")
    for report in result.functions:
        sig = result.signatures[report.name]
        line = f"  {sig.render(with_name=True)}"
        if locations:
            line += f"  [{report.span}]"
        if report.skipped:
            line += "  (skipped)"
        click.echo(line)


@click.group()
@click.version_option(__version__, prog_name="nudo")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """Infer types for Python functions from @nudo directives."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--locations", is_flag=True, help="Show where each function is defined.")
@click.option("--emit-stubs", is_flag=True, help="Write a .pyi stub next to each file.")
@click.option("--out", "out_dir", type=click.Path(file_okay=False), default=None,
              help="Directory for emitted stubs.")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Path to nudo.toml.")
def infer(
    files: tuple[str, ...],
    locations: bool,
    emit_stubs: bool,
    out_dir: str | None,
    fmt: str,
    config_path: str | None,
) -> None:
    """Infer signatures for the functions in FILES."""
    config = _load(config_path, Path(files[0]))
    renderer = DiagnosticRenderer(color=fmt == "text")
    had_errors = False
    payload = []

    for file in files:
        source = Path(file).read_text()
        result = analyze(source, filename=file, config=config, path=file)
        had_errors = had_errors or result.has_errors()

        if fmt == "json":
            payload.append({
                "file": file,
                "signatures": [sig.to_dict() for sig in result.signatures.values()],
                "diagnostics": [
                    {
                        "severity": d.severity.value,
                        "code": d.code,
                        "message": d.message,
                        "line": d.span.start_line,
                        "column": d.span.start_col,
                        "case": d.related_case,
                    }
                    for d in result.diagnostics
                ],
            })
        else:
            renderer.add_source(SourceText(source, file))
            for diag in result.diagnostics:
                click.echo(renderer.render(diag), err=True)
            _print_result(result, locations=locations)

        if emit_stubs:
            target = Path(file).with_suffix(".pyi")
            if out_dir is not None:
                Path(out_dir).mkdir(parents=True, exist_ok=True)
                target = Path(out_dir) / target.name
            target.write_text(generate_stub(result))
            if fmt == "text":
                click.echo(f"wrote {target}")

    if fmt == "json":
        click.echo(json.dumps(payload, indent=2))
    if had_errors:
        raise SystemExit(1)


@main.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--fail-on-error", is_flag=True,
              help="Stop at the first error diagnostic.")
def check(path: str, fail_on_error: bool) -> None:
    """Analyze every annotated file under PATH."""
    root = Path(path)
    try:
        config = load_config(find_config(root))
    except FileNotFoundError:
        config = NudoConfig()
    except ConfigError as e:
        click.echo(f"error: invalid nudo.toml: {e}", err=True)
        raise SystemExit(1)
    if fail_on_error:
        config.build.fail_on_error = True

    session = BuildSession(config)
    try:
        session.run(root)
    except BuildError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    for message in session.warnings:
        click.echo(message, err=True)
    click.echo(session.finish())


@main.command()
def lsp() -> None:
    """Start the nudo language server."""
    from nudo.lsp import main as lsp_main

    lsp_main()
