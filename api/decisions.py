"""
api/decisions.py -- Translate authorization decisions into HTTP errors.

The policy engine answers ALLOW / DENY(reason) / UNAUTHENTICATED; this is the
single place where those answers become status codes:

  UNAUTHENTICATED       -> 401
  DENY(not_found)       -> 404
  DENY(anything else)   -> 403  (store_error included: fail-closed)
"""

from typing import NoReturn

from fastapi import HTTPException

from auth.policy import Decision, DenyReason, Outcome


def enforce(decision: Decision, resource: str = "Resource") -> None:
    """Return silently if `decision` allows; raise the matching HTTPException otherwise."""
    if decision.outcome is Outcome.ALLOW:
        return
    if decision.outcome is Outcome.UNAUTHENTICATED:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if decision.reason is DenyReason.NOT_FOUND:
        raise_not_found(resource)
    raise HTTPException(
        status_code=403,
        detail={"code": "forbidden", "message": "You do not have permission to perform this action."},
    )


def raise_not_found(resource: str) -> NoReturn:
    raise HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"{resource} not found."},
    )
