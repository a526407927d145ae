"""Jagwax assistant core: archive, pairing, session and command dispatch."""
