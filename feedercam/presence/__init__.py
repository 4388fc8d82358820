"""Background-aware presence detection."""
