"""Auto-job workflow engine."""
