"""
Infrastructure layer - remote stores, settings, logging, and technical concerns.

This layer contains the document stores (FTP and local directory), the
atomic JSON synchronizer with its corruption repair pipeline, and the
configuration and logging setup shared by every other layer.
"""
