"""
Shared dependencies for the API routers
"""

from typing import Optional

from ..system import BankingSystem


# Global back office instance, created on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system
