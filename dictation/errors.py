from __future__ import annotations


class DictationError(RuntimeError):
    pass


class DeviceError(DictationError):
    """No input device, or the device went away while recording."""


class EndOfStream(DictationError):
    pass


class LoadError(DictationError):
    """Model files missing/corrupt, or the model disagrees with its descriptor."""


class DecodeError(DictationError):
    """Inference failed for the current utterance."""


class ShapeMismatchError(DecodeError):
    pass


class SessionBusyError(DictationError):
    pass


class SessionStateError(DictationError):
    pass
