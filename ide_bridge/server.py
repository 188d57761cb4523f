"""MCP server exposing the backend workflows over streamable HTTP."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from .backend.commands import CommandFailed
from .backend.supervisor import TransportError
from .config import Config, Project
from .formatter import NO_INFORMATION
from .models import Diagnostic, Severity, Span
from .workflow import Workflow


def _diagnostic_dict(diag: Diagnostic) -> dict[str, Any]:
    result: dict[str, Any] = {
        "severity": diag.severity.value,
        "message": diag.message,
    }
    if diag.span is not None:
        result.update(
            file=diag.span.file_path,
            line=diag.span.from_line,
            column=diag.span.from_col,
            end_line=diag.span.to_line,
            end_column=diag.span.to_col,
        )
    else:
        result["location"] = diag.location_text
    return result


def _failure(project: str, exc: Exception) -> dict[str, Any]:
    if isinstance(exc, TransportError):
        return {"project": project, "status": exc.status.value, "error": str(exc)}
    if isinstance(exc, CommandFailed):
        return {"project": project, "status": "failed", "kind": exc.kind.value, "error": exc.reason}
    return {"project": project, "status": "error", "error": str(exc)}


def create_server(config: Config, workflow: Workflow) -> FastMCP:
    """Create and configure the MCP server."""

    sv = workflow.supervisor

    mcp = FastMCP(
        name="ide-bridge",
        instructions=(
            "Talks to a long-running incremental analysis backend, one per project. "
            "Use check_project to recompile and get errors and warnings, the lookup "
            "tools for types and identifier info at a source position, and "
            "restart_backend if the backend is stuck or died."
        ),
        host="127.0.0.1",
        port=config.port,
        stateless_http=True,
    )

    def _project(path: str | None) -> Project:
        return config.resolve_project(path)

    def _span(file: str, line: int, column: int,
              end_line: int | None, end_column: int | None) -> Span:
        return Span(
            file, line, column,
            end_line if end_line is not None else line,
            end_column if end_column is not None else column,
        )

    # ------------------------------------------------------------------
    # Tool: check_project
    # ------------------------------------------------------------------
    @mcp.tool()
    async def check_project(project_path: str | None = None) -> dict:
        """Recompile a project and return its errors and warnings.

        Starts the backend on first use; in that case ask again once it is up.

        Args:
            project_path: A directory or file inside the project. Defaults to
                the configured project directory.
        """
        try:
            project = _project(project_path)
        except ValueError as exc:
            return {"status": "error", "error": str(exc)}
        try:
            found = await workflow.check(project)
        except Exception as exc:
            return _failure(project.key, exc)
        if found is None:
            return {"project": project.key, "status": "backend_exited"}
        return {
            "project": project.key,
            "status": "ok",
            "errors": sum(1 for d in found if d.severity is Severity.ERROR),
            "warnings": sum(1 for d in found if d.severity is Severity.WARNING),
            "diagnostics": [_diagnostic_dict(d) for d in found],
        }

    # ------------------------------------------------------------------
    # Tool: reload_project
    # ------------------------------------------------------------------
    @mcp.tool()
    async def reload_project(project_path: str | None = None) -> dict:
        """Queue a recompile without waiting for the result.

        Args:
            project_path: A directory or file inside the project.
        """
        try:
            project = _project(project_path)
            status = await workflow.reload(project)
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {"project": project.key, "status": status.value}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_exp_types(
        file: str,
        line: int,
        column: int,
        end_line: int | None = None,
        end_column: int | None = None,
        project_path: str | None = None,
    ) -> dict:
        """Types of the expressions enclosing a source range, innermost first.

        Args:
            file: Path relative to the project root.
            line: 1-based start line.
            column: 1-based start column.
            end_line: End line; defaults to ``line``.
            end_column: End column; defaults to ``column``.
            project_path: A directory or file inside the project.
        """
        try:
            project = _project(project_path)
        except ValueError as exc:
            return {"status": "error", "error": str(exc)}
        try:
            records = await workflow.exp_types(
                project, _span(file, line, column, end_line, end_column),
            )
        except Exception as exc:
            return _failure(project.key, exc)
        if not records:
            return {"project": project.key, "status": "empty", "message": NO_INFORMATION}
        return {
            "project": project.key,
            "status": "ok",
            "types": [{"type": r.type, "span": str(r.span)} for r in records],
        }

    @mcp.tool()
    async def get_span_info(
        file: str,
        line: int,
        column: int,
        end_line: int | None = None,
        end_column: int | None = None,
        project_path: str | None = None,
    ) -> dict:
        """What the backend knows about the identifier at a source range.

        Args:
            file: Path relative to the project root.
            line: 1-based start line.
            column: 1-based start column.
            end_line: End line; defaults to ``line``.
            end_column: End column; defaults to ``column``.
            project_path: A directory or file inside the project.
        """
        try:
            project = _project(project_path)
        except ValueError as exc:
            return {"status": "error", "error": str(exc)}
        try:
            records = await workflow.span_info(
                project, _span(file, line, column, end_line, end_column),
            )
        except Exception as exc:
            return _failure(project.key, exc)
        if not records:
            return {"project": project.key, "status": "empty", "message": NO_INFORMATION}
        return {
            "project": project.key,
            "status": "ok",
            "info": [
                {
                    "name": r.name,
                    "kind": r.kind,
                    "type": r.type,
                    "module": r.module,
                    "package": r.package,
                    "defined_at": str(r.definition) if r.definition else r.definition_text,
                    "span": str(r.span),
                }
                for r in records
            ],
        }

    @mcp.tool()
    async def get_loaded_modules(project_path: str | None = None) -> dict:
        """List the modules the backend has loaded, sorted by name.

        Args:
            project_path: A directory or file inside the project.
        """
        try:
            project = _project(project_path)
        except ValueError as exc:
            return {"status": "error", "error": str(exc)}
        try:
            modules = await workflow.loaded_modules(project)
        except Exception as exc:
            return _failure(project.key, exc)
        if not modules:
            return {"project": project.key, "status": "empty", "message": NO_INFORMATION}
        return {"project": project.key, "status": "ok", "modules": modules}

    # ------------------------------------------------------------------
    # Backend lifecycle
    # ------------------------------------------------------------------
    @mcp.tool()
    async def restart_backend(project_path: str | None = None) -> dict:
        """Stop and start a project's backend. Queued requests are kept.

        Args:
            project_path: A directory or file inside the project.
        """
        try:
            project = _project(project_path)
            session = await sv.restart(project)
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {"project": project.key, "status": "running", "pid": session.pid}

    @mcp.tool()
    async def stop_backend(project_path: str | None = None, force: bool = False) -> dict:
        """Stop a project's backend.

        Args:
            project_path: A directory or file inside the project.
            force: If True, send SIGKILL immediately instead of SIGTERM.
        """
        try:
            project = _project(project_path)
            session = await sv.stop(project.key, force=force)
        except KeyError:
            return {"status": "not_found", "error": "Backend was never started"}
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {"project": project.key, "status": "stopped", "exit_code": session.exit_code}

    @mcp.tool()
    async def backend_status() -> dict:
        """List every project backend with its process and queue state."""
        sessions = sv.status()
        return {"count": len(sessions), "sessions": sessions}

    @mcp.tool()
    async def get_backend_output(project_path: str | None = None, tail: int = 2000) -> dict:
        """Get the most recent stderr output of a project's backend.

        Args:
            project_path: A directory or file inside the project.
            tail: Number of characters to retrieve from the end of the buffer.
        """
        try:
            project = _project(project_path)
            return sv.get_output(project.key, tail=tail)
        except KeyError:
            return {"status": "not_found", "error": "Backend was never started"}
        except ValueError as exc:
            return {"status": "error", "error": str(exc)}

    return mcp
