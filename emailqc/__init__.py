"""Email QC backend: preview parsing, link verification and the QC run pipeline."""
