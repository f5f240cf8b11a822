"""
Error taxonomy for the Face Match Engine

Only ConfigurationError, NoFaceDetected and PersistenceError leave the engine.
Provider-side errors are raised inside backends and converted to None / 0.0
by the extractor and comparator.
"""


class FaceMatchError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(FaceMatchError):
    """No recognition provider is both active and enabled."""


class NoFaceDetected(FaceMatchError):
    """The query image produced no descriptor, so there is nothing to search for."""


class PersistenceError(FaceMatchError):
    """The descriptor store or provider table could not be read or written."""


class DescriptorMismatchError(FaceMatchError, ValueError):
    """Descriptors from different provider types were passed to one comparison."""


class TransientProviderError(FaceMatchError):
    """A recognition backend could not serve the request right now."""

    category = "provider_error"


class ProviderAuthorizationError(TransientProviderError):
    """The backend requires vendor approval for the requested feature."""

    category = "authorization_required"


class NoFaceInImage(TransientProviderError):
    """The backend answered but found no face in the image."""

    category = "no_face"


class ImageLoadError(TransientProviderError):
    """The image could not be fetched, decoded or prepared for upload."""

    category = "image_unavailable"
