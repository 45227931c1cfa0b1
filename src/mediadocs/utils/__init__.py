"""Utility helpers shared across mediadocs modules."""
