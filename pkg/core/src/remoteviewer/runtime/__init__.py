"""
Runtime - request-time answers computed from schedule snapshots.
"""
