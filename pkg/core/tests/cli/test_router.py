"""
Tests for command group registration.
"""

import pytest
import typer

from remoteviewer.cli.main import router
from remoteviewer.cli.router import CliRouter


def test_groups_are_registered_with_documentation():
    assert router.list_registered_groups() == ["channel", "schedule", "media"]
    assert router.validate_documentation_links() == {"channel": True, "schedule": True, "media": True}


def test_duplicate_registration_is_rejected():
    local_router = CliRouter(typer.Typer())
    local_router.register("channel", typer.Typer(), doc_path="channel.md")
    with pytest.raises(ValueError, match="already registered"):
        local_router.register("channel", typer.Typer())


def test_missing_documentation_is_reported(tmp_path):
    local_router = CliRouter(typer.Typer())
    local_router.register("media", typer.Typer(), doc_path="media.md")
    local_router.register("extra", typer.Typer())
    assert local_router.validate_documentation_links(tmp_path) == {"media": False, "extra": False}
