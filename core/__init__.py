"""Core domain logic for the caregiver health companion.

This package contains the business logic and domain models,
isolated from the store and the UI for easy testing and reasoning.
"""
