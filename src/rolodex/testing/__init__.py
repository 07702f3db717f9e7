"""Test support utilities for the rolodex package.

``rolodex.testing.memory`` provides in-memory stores and provider doubles with
the same semantics as the asyncpg stores; ``rolodex.testing.migration`` holds
helpers for migration integration tests. Nothing here depends on pytest.
"""

from __future__ import annotations
