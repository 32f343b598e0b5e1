"""
Shared API dependencies
"""

import threading
from typing import Optional

from ..system import LendingSystem


_lending_system: Optional[LendingSystem] = None
_lock = threading.Lock()


def get_lending_system() -> LendingSystem:
    """Lending system built from configuration on first use"""
    global _lending_system
    if _lending_system is None:
        with _lock:
            if _lending_system is None:
                _lending_system = LendingSystem()
    return _lending_system
