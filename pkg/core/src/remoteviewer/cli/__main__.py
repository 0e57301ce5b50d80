#!/usr/bin/env python3
"""
CLI entry point for remoteviewer.cli module.

This allows running: python -m remoteviewer.cli
"""

from .main import cli

if __name__ == "__main__":
    cli()
