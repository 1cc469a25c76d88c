"""
Application layer for the signals bounded context.

Use cases coordinate domain services and ports to fulfil
business operations. No framework or infrastructure imports allowed.
"""
