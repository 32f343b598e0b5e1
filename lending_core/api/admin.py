"""
Administrative endpoints
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import date

from .deps import get_lending_system
from ..system import LendingSystem


router = APIRouter()


@router.post("/overdue-sweep")
def run_overdue_sweep(
    as_of: Optional[date] = Query(None, description="Evaluation date (defaults to today)"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Raise automatic risk flags for overdue installments and default loans"""
    return system.sweep_overdue(as_of)


@router.get("/audit/verify")
def verify_audit_trail(system: LendingSystem = Depends(get_lending_system)):
    """Verify the audit hash chain"""
    return system.verify_audit_trail()
