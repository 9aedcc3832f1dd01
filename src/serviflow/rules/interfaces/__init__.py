"""
Rules Interfaces Layer
======================

FastAPI route handlers for ticket processing rules.
"""

from serviflow.rules.interfaces.controllers import rules_router

__all__ = ["rules_router"]
