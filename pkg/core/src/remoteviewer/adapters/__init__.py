"""
Adapters for external tools and services.

Probers determine duration and codec metadata of remote media files.
"""
