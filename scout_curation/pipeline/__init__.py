"""Analysis pipeline: service context, cancellation, progress and the orchestrator."""
