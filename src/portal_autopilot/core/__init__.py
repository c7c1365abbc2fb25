"""Run orchestration, data model and error kinds."""
