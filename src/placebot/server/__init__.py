"""Command server: order validation, history, agent registry and broadcast."""
