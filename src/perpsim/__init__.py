"""Perpetual-futures market simulation core.

Synthesizes oracle price series under named models/scenarios and drives a
fleet of autonomous trading agents that react to the series by emitting
trade intents. Persistence, signing and transport are external collaborators.
"""

__version__ = "0.1.0"
