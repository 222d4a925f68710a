"""
Chronicle - Narrative Role-Playing Engine

A deterministic game-state resolution engine for oracle-narrated adventures.
A generative text oracle narrates; the engine arbitrates:
- Rule calculation (stat bonuses, skill checks, combat math, pricing)
- Folding structured narrative deltas into an authoritative GameState
- Combat resolution independent of the oracle's claims
- Mode transitions and turn ownership for shared sessions
"""

__version__ = "0.1.0"
