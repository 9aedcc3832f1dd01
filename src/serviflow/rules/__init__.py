"""
Ticket Processing Rules Module
==============================

Bounded context for pattern-matched automation on tickets.

Responsibilities:
- Match rules against ticket title and body
- Apply one typed action per rule, with an audit trail
- Run rules in bulk in the background with retry and a circuit breaker
- Report bulk run outcomes as completion notifications
"""

__version__ = "1.0.0"
