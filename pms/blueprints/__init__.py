"""
PMS — Project Management System
Blueprint registry.
"""

from flask import request


def paging_args(default_limit=50, max_limit=200):
    """Read limit/offset from the query string.

    Query params:
        limit:  max items (default 50, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset
