"""
CLI Router: Centralized command group registration and dispatch.

Each command group is a Typer app that owns its own subcommands; the router
registers them on the root app and keeps the documentation mapping next to
the registration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer


class CliRouter:
    """
    Centralized router for CLI command groups.

    Provides explicit registration of command groups with documentation mapping.
    """

    def __init__(self, root_app: typer.Typer) -> None:
        self.root_app = root_app
        self._registered_groups: dict[str, dict[str, Any]] = {}

    def register(
        self,
        name: str,
        command_group: typer.Typer,
        *,
        help_text: str | None = None,
        doc_path: str | None = None,
    ) -> None:
        """
        Register a command group with the router.

        Args:
            name: Command group name (e.g., "channel", "schedule")
            command_group: Typer app instance for this command group
            help_text: Help text for the command group
            doc_path: Path to documentation file (relative to docs/cli/)
        """
        if name in self._registered_groups:
            raise ValueError(f"Command group '{name}' is already registered")

        self.root_app.add_typer(command_group, name=name, help=help_text)
        self._registered_groups[name] = {
            "name": name,
            "help": help_text,
            "doc_path": doc_path,
            "command_group": command_group,
        }

    def get_registered_groups(self) -> dict[str, dict[str, Any]]:
        return self._registered_groups.copy()

    def list_registered_groups(self) -> list[str]:
        """Registered command group names in registration order."""
        return list(self._registered_groups.keys())

    def validate_documentation_links(self, docs_root: Path | None = None) -> dict[str, bool]:
        """
        Check that every registered group has its documentation file.

        Args:
            docs_root: Root of the CLI docs (defaults to <project root>/docs/cli/)

        Returns:
            Group name -> True if the mapped document exists
        """
        if docs_root is None:
            # src/remoteviewer/cli/router.py -> pkg/core
            project_root = Path(__file__).parent.parent.parent.parent
            docs_root = project_root / "docs" / "cli"

        results: dict[str, bool] = {}
        for name, metadata in self._registered_groups.items():
            doc_path = metadata.get("doc_path")
            if not doc_path:
                results[name] = False
                continue
            full_path = docs_root / doc_path
            results[name] = full_path.is_file()
        return results


# Global router instance
_router: CliRouter | None = None


def get_router(root_app: typer.Typer) -> CliRouter:
    """Get or create the global CLI router instance."""
    global _router
    if _router is None:
        _router = CliRouter(root_app)
    return _router
