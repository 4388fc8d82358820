"""Open-set species recognition against a reference gallery."""
