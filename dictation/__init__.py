from dictation.errors import (
    DecodeError,
    DeviceError,
    DictationError,
    EndOfStream,
    LoadError,
    SessionBusyError,
    SessionStateError,
    ShapeMismatchError,
)

__version__ = "0.1.0"

__all__ = [
    "DecodeError",
    "DeviceError",
    "DictationError",
    "EndOfStream",
    "LoadError",
    "SessionBusyError",
    "SessionStateError",
    "ShapeMismatchError",
]
