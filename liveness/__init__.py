"""Liveness task progression: head rotation and breath challenges."""
