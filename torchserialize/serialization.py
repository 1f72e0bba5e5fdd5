"""
Checkpoint helpers writing serialized models to files and text streams.
"""
import asyncio
import os
from typing import IO, TextIO

from .codec import deserialize, serialize


def save_checkpoint(
    model,
    out: str | os.PathLike | TextIO | IO[str],
) -> None:
    """
    Save a model, weights and training state, to a checkpoint.

    Must not be called from a running event loop; await ``serialize``
    directly there.

    Args:
        model: Model to save
        out: Path or text stream to write to
    """
    text = asyncio.run(serialize(model))

    if isinstance(out, (str, os.PathLike)):
        with open(out, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        out.write(text)


def load_checkpoint(src: str | os.PathLike | TextIO | IO[str]):
    """
    Load a model saved with ``save_checkpoint``.

    Args:
        src: Path or text stream to read from

    Returns:
        The model, compiled and ready to resume training
    """
    if isinstance(src, (str, os.PathLike)):
        with open(src, encoding="utf-8") as f:
            text = f.read()
    else:
        text = src.read()

    return asyncio.run(deserialize(text))
