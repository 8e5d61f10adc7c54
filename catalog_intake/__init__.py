"""Catalog Intake: supplier submission extraction, review, and template feedback."""

__version__ = "0.1.0"
