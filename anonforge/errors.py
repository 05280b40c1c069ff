"""Error taxonomy shared by the gateways, renderer and orchestrator."""


class AnonForgeError(Exception):
    pass


class ConfigError(AnonForgeError):
    """Raised when a required service setting is missing."""
    pass


class ValidationError(AnonForgeError, ValueError):
    """Bad input: unsupported file type, impossible segment, unknown field."""
    pass


class TransportError(AnonForgeError):
    """Network failure, timeout, or an unexpected HTTP status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class UploadError(TransportError):
    pass


class MetadataError(TransportError):
    pass


class NotReadyError(TransportError):
    """The service is still materializing a derivative (HTTP 423)."""
    pass


class SkipSegment(AnonForgeError):
    """A single voice segment cannot be converted; the batch continues."""
    pass


class SkipSegmentLowVolume(SkipSegment):
    pass


class SkipSegmentConversionFailed(SkipSegment):
    pass


class EmptyArtifactError(AnonForgeError):
    """A payload was empty or below the minimum plausible size."""
    pass


class RendererError(AnonForgeError):
    """Local selective-blur decode, encode or mux failure."""
    pass


class ProcessingFailedError(AnonForgeError):
    """Processing failed and not even the original video could be recovered."""
    pass


class PipelineCancelled(AnonForgeError):
    pass
