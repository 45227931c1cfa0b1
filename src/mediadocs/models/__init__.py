"""Pydantic domain models for mediadocs."""
