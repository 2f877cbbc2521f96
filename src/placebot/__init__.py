"""
placebot - coordinated canvas painting.

Two halves share one protocol:
- placebot.server: order validation, history, agent registry and broadcast
- placebot.agent: canvas reconstruction, pixel diffing and placement loop
"""

__version__ = "1.0.0"
