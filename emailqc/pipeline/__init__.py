"""QC run pipeline: stages, model client, orchestrator and run queue."""
