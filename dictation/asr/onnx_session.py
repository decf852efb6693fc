from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import onnxruntime as ort

from dictation.errors import DecodeError, LoadError

logger = logging.getLogger(__name__)

# the network silently accepts the wrong integer width, so always use the declared one
_INT_TYPES = {
    "tensor(int32)": np.int32,
    "tensor(int64)": np.int64,
}


def open_session(path: Path, intra_op_threads: int, providers: Sequence[str]) -> ort.InferenceSession:
    path = Path(path)
    if not path.is_file():
        raise LoadError(f"{path.name} not found in {path.parent}")

    opts = ort.SessionOptions()
    opts.intra_op_num_threads = intra_op_threads
    try:
        session = ort.InferenceSession(str(path), sess_options=opts, providers=list(providers))
    except Exception as exc:
        raise LoadError(f"Failed to load ONNX model {path}: {exc}") from exc

    for arg in session.get_inputs():
        logger.info("%s input: %s %s %s", path.name, arg.name, arg.shape, arg.type)
    for arg in session.get_outputs():
        logger.info("%s output: %s %s %s", path.name, arg.name, arg.shape, arg.type)
    return session


def inputs_by_name(session) -> Dict[str, object]:
    return {arg.name: arg for arg in session.get_inputs()}


def outputs_by_name(session) -> Dict[str, object]:
    return {arg.name: arg for arg in session.get_outputs()}


def require(io: Mapping[str, object], names: Sequence[str], what: str) -> None:
    missing = [n for n in names if n not in io]
    if missing:
        raise LoadError(f"{what} is missing {', '.join(missing)} (has: {', '.join(io)})")


def int_dtype(arg) -> type:
    dtype = _INT_TYPES.get(arg.type)
    if dtype is None:
        raise LoadError(f"input '{arg.name}' must be an integer tensor, model declares {arg.type}")
    return dtype


def static_dim(shape: Sequence[object], index: int) -> Optional[int]:
    """Concrete size of a declared dim, None when symbolic/unknown."""
    if not shape:
        return None
    try:
        dim = shape[index]
    except IndexError:
        return None
    if isinstance(dim, (int, np.integer)) and dim > 0:
        return int(dim)
    return None


def run(session, output_names: Optional[List[str]], feed: Dict[str, np.ndarray], what: str) -> List[np.ndarray]:
    try:
        return session.run(output_names, feed)
    except Exception as exc:
        raise DecodeError(f"{what} inference failed: {exc}") from exc
