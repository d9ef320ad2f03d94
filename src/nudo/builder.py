"""Build-session glue: analyze every annotated file under a project tree."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path

from nudo.analyzer import AnalysisResult, analyze
from nudo.config import NudoConfig
from nudo.directives import TAG_PATTERN
from nudo.errors import Diagnostic

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """An error diagnostic was produced while ``fail_on_error`` is set."""

    def __init__(self, message: str, diagnostics: list[Diagnostic]) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


def format_diagnostic(path: str, diag: Diagnostic) -> str:
    span = diag.span
    return f"[nudo] {path}:{span.start_line}:{span.start_col} {diag.severity.value}: {diag.message}"


def matches(path: str, include: list[str], exclude: list[str]) -> bool:
    """Glob match on a posix path; ``**/`` also matches at the top level."""
    def hit(pattern: str) -> bool:
        if fnmatch.fnmatch(path, pattern):
            return True
        return pattern.startswith("**/") and fnmatch.fnmatch(path, pattern[3:])

    if any(hit(p) for p in exclude):
        return False
    return any(hit(p) for p in include)


@dataclass
class BuildSession:
    """Analyzes files one at a time and keeps their results until the next start."""

    config: NudoConfig = field(default_factory=NudoConfig)
    warnings: list[str] = field(default_factory=list)
    _cache: dict[str, AnalysisResult] = field(default_factory=dict)

    def start(self) -> None:
        self._cache.clear()
        self.warnings.clear()

    def wants(self, path: str, source: str) -> bool:
        build = self.config.build
        if not matches(path, build.include, build.exclude):
            return False
        return TAG_PATTERN.search(source) is not None

    def transform(
        self, path: str, source: str, file: Path | None = None,
    ) -> AnalysisResult | None:
        """Analyze one file. Returns None when the file is not of interest.

        *file* is the file on disk behind *path*, when there is one.

        Errors raise BuildError when ``fail_on_error`` is set and are
        recorded as warnings otherwise.
        """
        if not self.wants(path, source):
            return None
        logger.info("analyzing %s", path)
        result = analyze(source, filename=path, config=self.config, path=file)
        self._cache[path] = result

        for diag in result.diagnostics:
            message = format_diagnostic(path, diag)
            if diag.is_error and self.config.build.fail_on_error:
                raise BuildError(message, result.diagnostics)
            self.warnings.append(message)
        return result

    def run(self, root: Path) -> list[AnalysisResult]:
        """start(), then transform every matching file under *root*."""
        self.start()
        results = []
        for file in sorted(root.rglob("*.py")):
            rel = file.relative_to(root).as_posix()
            result = self.transform(rel, file.read_text(), file)
            if result is not None:
                results.append(result)
        return results

    @property
    def results(self) -> dict[str, AnalysisResult]:
        return dict(self._cache)

    def finish(self) -> str:
        errors = sum(r.error_count for r in self._cache.values())
        warnings = sum(r.warning_count for r in self._cache.values())
        return f"[nudo] Analysis complete: {errors} error(s), {warnings} warning(s)"
