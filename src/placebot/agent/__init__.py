"""Placement agent: canvas reconstruction, pixel diffing and the placement loop."""
