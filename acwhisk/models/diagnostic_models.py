"""
Backend Diagnostic Models.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from acwhisk.models.enums import DiagnosticStatus


class DiagnosticResult(BaseModel):
    """Outcome of one backend readiness check.

    Attributes
    ----------
    test:
        Human label of the check (e.g. ``"Database Connection"``).
    status:
        ``pass`` / ``fail`` / ``warning`` / ``info``.
    message:
        What was observed.
    solution:
        Suggested remedy for the operator, when one applies.
    """

    test: str
    status: DiagnosticStatus
    message: str
    solution: Optional[str] = None
