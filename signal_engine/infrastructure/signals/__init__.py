"""
Infrastructure adapters for the signals bounded context.

Each adapter implements a domain port (ABC) and connects
to an external system.
"""
