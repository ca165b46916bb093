"""Stage registry, retries, fallbacks and the pipeline orchestrator."""
