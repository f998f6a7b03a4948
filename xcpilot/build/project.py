"""Detect the Xcode workspace / project / Swift package in a directory."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ProjectContext:
    """What can be built from a directory. Prefers .xcworkspace over .xcodeproj."""

    directory: Path
    workspace: str | None = None
    project: str | None = None
    package: str | None = None

    @classmethod
    def detect(cls, directory: str | Path = ".") -> ProjectContext:
        root = Path(directory).expanduser().resolve()
        workspace = next((p.name for p in sorted(root.glob("*.xcworkspace"))), None)
        project = next((p.name for p in sorted(root.glob("*.xcodeproj"))), None)
        package = "Package.swift" if (root / "Package.swift").is_file() else None
        return cls(directory=root, workspace=workspace, project=project, package=package)

    @property
    def is_valid(self) -> bool:
        """True if there is something buildable here."""
        return bool(self.workspace or self.project or self.package)

    @property
    def inferred_scheme(self) -> str | None:
        """Guess the scheme from the workspace/project name, or the package directory."""
        if self.workspace:
            return Path(self.workspace).stem
        if self.project:
            return Path(self.project).stem
        if self.package:
            return self.directory.name
        return None

    @property
    def target_args(self) -> list[str]:
        """xcodebuild arguments selecting the workspace or project."""
        if self.workspace:
            return ["-workspace", str(self.directory / self.workspace)]
        if self.project:
            return ["-project", str(self.directory / self.project)]
        return []
