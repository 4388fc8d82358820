"""
Core package init for feedercam.

Makes the `feedercam` modules importable without requiring an editable install.
"""

__all__ = [
    "attribution",
    "pipeline",
    "presence",
    "recognition",
    "errors",
    "io_utils",
    "types",
]
