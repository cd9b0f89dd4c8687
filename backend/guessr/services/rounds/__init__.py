"""Round domain services: scoring, timers and the round state machine.

This package contains the game mechanics that HTTP routes and socket
handlers drive, keeping transport concerns separated from the rules.
"""
