from __future__ import annotations


class CVAEError(Exception):
    """Base class for every error raised by cvae_anim."""


class ManifestLoadError(CVAEError, OSError):
    pass


class ManifestParseError(CVAEError, ValueError):
    pass


class InvalidLabelError(CVAEError, ValueError):
    def __init__(self, label: object, labels=None, message: str = None) -> None:
        self.label = label
        if message is None:
            if labels:
                message = "Unknown label {0!r} (expected one of: {1})".format(label, ", ".join(labels))
            else:
                message = "Unknown label {0!r}".format(label)
        super().__init__(message)


class ShapeMismatchError(CVAEError, ValueError):
    pass


class InferenceError(CVAEError, RuntimeError):
    pass


class EncodingError(CVAEError, ValueError):
    pass


class SessionBusyError(CVAEError, RuntimeError):
    pass
