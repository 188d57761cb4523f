from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

MANIFEST_SUFFIX = ".cabal"
DEFAULT_PORT = 8902


@dataclass(frozen=True)
class Project:
    """A project under analysis; ``key`` names its backend session."""

    key: str
    root: Path
    manifest: Path | None = None


def find_project(start: str | Path) -> Project:
    """Locate the project owning ``start`` by walking up to its build manifest.

    src/Foo/Bar.hs  ->  ./my-lib.cabal  ->  Project(key="my-lib", root=.)

    Raises ValueError if no manifest is found up to the filesystem root.
    """
    path = Path(start).resolve()
    if path.is_file():
        path = path.parent

    for directory in (path, *path.parents):
        manifests = sorted(directory.glob(f"*{MANIFEST_SUFFIX}"))
        if manifests:
            manifest = manifests[0]
            return Project(key=manifest.stem, root=directory, manifest=manifest)

    raise ValueError(f"No {MANIFEST_SUFFIX} file found above {path}")


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    backend_command: str = "stack"
    backend_args: tuple[str, ...] = ("ide", "start")
    project_dir: str = field(default_factory=os.getcwd)
    show_messages: bool = False
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    def backend_argv(self, project: Project) -> list[str]:
        """The fixed argument vector that starts a backend for ``project``."""
        return [self.backend_command, *self.backend_args, project.key]

    def resolve_path(self, relative: str | None = None) -> Path:
        """Resolve a user-provided path relative to project_dir.

        Absolute paths are used as-is.  Raises ValueError if it does not exist.
        """
        base = Path(self.project_dir)
        if not relative:
            resolved = base.resolve()
        else:
            rel = Path(relative)
            resolved = rel.resolve() if rel.is_absolute() else (base / rel).resolve()

        if not resolved.exists():
            raise ValueError(f"Path does not exist: {resolved}")
        return resolved

    def resolve_project(self, relative: str | None = None) -> Project:
        """Resolve a path like :meth:`resolve_path`, then find its project."""
        return find_project(self.resolve_path(relative))

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        args = os.getenv("IDE_BACKEND_ARGS")

        return cls(
            backend_command=os.getenv("IDE_BACKEND_COMMAND", "stack"),
            backend_args=tuple(shlex.split(args)) if args is not None else ("ide", "start"),
            project_dir=os.getenv("IDE_PROJECT_DIR", os.getcwd()),
            show_messages=_flag(os.getenv("IDE_SHOW_MESSAGES")),
            port=int(os.getenv("IDE_MCP_PORT", str(DEFAULT_PORT))),
            log_level=os.getenv("IDE_LOG_LEVEL", "INFO").upper(),
        )
