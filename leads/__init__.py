"""Backend package: DB models, matching rules, pipelines, APIs.

This package owns partner and inquiry records, the eligibility and scoring
rules, and the pipelines that match a new inquiry to partners and distribute
the lead to them.
"""
