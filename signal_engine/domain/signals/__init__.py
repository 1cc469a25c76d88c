"""
Signals bounded context: domain layer.

- Signal lifecycle state machine
- Capital ledger (effective cash, fills)
- Signal validation and allocation
- Scheduling policy for the periodic jobs
"""
