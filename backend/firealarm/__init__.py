"""Fire alarm monitoring backend: incident correlation and responder chat."""
