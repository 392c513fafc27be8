"""
Repository layer for cliqsafe.

All SQL lives here and ONLY here. Every function takes an open
asyncpg connection so services decide the transaction boundaries.
"""

from cliqsafe.repos import (
    approval_repo,
    consent_repo,
    parent_link_repo,
    plan_repo,
    token_repo,
    user_repo,
)

__all__ = [
    "approval_repo",
    "consent_repo",
    "parent_link_repo",
    "plan_repo",
    "token_repo",
    "user_repo",
]
