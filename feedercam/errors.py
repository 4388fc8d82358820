"""Exception taxonomy for the feedercam pipeline."""

from __future__ import annotations


class FeederCamError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(FeederCamError):
    """A frame could not be decoded into pixels."""


class ClusteringDegenerate(FeederCamError):
    """Fewer than two distinct fingerprints; two regimes cannot be separated."""


class EmbeddingUnavailable(FeederCamError):
    """The embedding capability failed, timed out, or returned an unusable vector."""


class EmptyGallery(FeederCamError):
    """The reference gallery holds no entries."""


class ModelLoadError(FeederCamError):
    """The embedding model could not be loaded at all; fatal for a scan."""
