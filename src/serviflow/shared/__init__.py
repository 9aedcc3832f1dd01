"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded contexts
(SLA Timing and Ticket Processing Rules).

Architecture Pattern: Modular Monolith
- Each module (sla, rules) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from SLA or Rules to shared kernel.
"""

__version__ = "1.0.0"
