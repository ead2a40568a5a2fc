"""Error/warning collection shared by every compiler stage."""

from __future__ import annotations

from threadline.models import Diagnostic, DiagnosticKind


class DiagnosticLog:
    def __init__(self) -> None:
        self.errors: list[Diagnostic] = []
        self.warnings: list[Diagnostic] = []

    def error(
        self,
        kind: DiagnosticKind,
        message: str,
        line: int | None = None,
        passage: str | None = None,
    ) -> None:
        self.errors.append(Diagnostic(kind=kind, message=message, line=line, passage=passage))

    def warning(
        self,
        kind: DiagnosticKind,
        message: str,
        line: int | None = None,
        passage: str | None = None,
    ) -> None:
        self.warnings.append(Diagnostic(kind=kind, message=message, line=line, passage=passage))
