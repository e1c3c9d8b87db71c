"""
Forge Workflows — the TestForge pipeline built on forge_engine.

Phases: sandbox setup, context gathering, unit test generation, pull
request, coverage analysis. ``run_full_pipeline`` runs them end to end.
"""

__version__ = "1.0.0"
