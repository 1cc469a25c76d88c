"""
Infrastructure layer package.

Contains concrete implementations (adapters) of the ports
defined in the domain layer: the SQL store, the broker API,
the chat bot API and the job scheduler.
"""
