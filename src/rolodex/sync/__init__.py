"""External contact directory sync (Google People API)."""
