"""Pipelines for partner registration, matching, distribution, and the inquiry lifecycle.

Each step is callable independently so the HTTP layer, scripts, and tests can
drive the same code paths.
"""
