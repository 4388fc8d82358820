"""Per-frame result assembly and export."""
