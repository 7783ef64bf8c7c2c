"""
Services module for the auto-job workflow.

The controller (AutoJobWorkflow) drives a run through its steps and calls
into the job registry, the recommendation cache and the AI adapter. The
scheduler triggers runs for owners with scheduling enabled.

Submodules are imported directly, e.g.
``from src.services.auto_job_workflow import AutoJobWorkflow``.
"""
