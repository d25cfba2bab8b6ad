"""Workflow engine for Bober incidents.

- Orchestrator: analysis -> summarization -> optional resolution
- Phase runner: bounded agent loop with completion detection
- Status registry: thread-safe progress tracking and cancellation
"""
