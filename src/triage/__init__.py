"""
Triage Module
=============

Bounded Context for the ticket triage decision engine.

Responsibilities:
- Classify tickets into categories with a confidence score
- Find similar resolved tickets in the corpus
- Assess SLA risk and the Resolution Stability Index
- Decide between auto-resolve and human review, with an explainable path
- Keep an append-only audit log of every decision and reviewer action
"""

__version__ = "1.0.0"
