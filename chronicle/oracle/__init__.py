"""
Oracle - Everything the engine says to, and hears from, the narrator.

- prompts: request context + response schema per call kind
- schemas: validating adapters that default every optional field
- client: HTTP transport and a scripted stand-in
"""

from .client import HttpIllustrator, HttpOracle, Illustrator, NullIllustrator, Oracle, ScriptedOracle
from .prompts import CallKind, OracleRequest
from .schemas import adapt

__all__ = [
    "CallKind",
    "HttpIllustrator",
    "HttpOracle",
    "Illustrator",
    "NullIllustrator",
    "Oracle",
    "OracleRequest",
    "ScriptedOracle",
    "adapt",
]
