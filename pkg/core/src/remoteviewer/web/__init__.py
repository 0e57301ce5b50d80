"""
HTTP API for remote-viewer.
"""
