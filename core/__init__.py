"""Core module - configuration, errors and observability.

Shared by the property cache, the matching engine, the mapping state machine
and the persistence layer. Nothing in here talks to the knowledge base;
transport lives in /connectors/.
"""

__version__ = "1.0.0"
