"""
SLA Timing Module
=================

Bounded context for service level agreement timing.

Responsibilities:
- Resolve which SLA applies to a ticket and compute its deadlines
- Measure elapsed time in business minutes, net of customer-wait pauses
- Detect near, breach and past-breach thresholds per tenant on a fixed tick
- Write each threshold notification exactly once
"""

__version__ = "1.0.0"
