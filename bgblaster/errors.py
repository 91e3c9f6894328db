"""Error types raised by the model session and compositor."""


class BackgroundRemovalError(Exception):
    """Base class for every failure the UI controller knows how to absorb."""


class ModelInitError(BackgroundRemovalError):
    """The pretrained model or its processor could not be loaded."""


class NotInitializedError(BackgroundRemovalError):
    """`ModelSession.run` was called before a successful `initialize`."""


class InferenceError(BackgroundRemovalError):
    """Decoding, preprocessing or the forward pass failed for one image."""


class EncodingError(BackgroundRemovalError):
    """The mask or composite could not be drawn or encoded as PNG."""
