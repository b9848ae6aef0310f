"""
Sample loading.

Reads per-signal event tables from numpy files. Each file holds an
events x fields array whose columns follow ``pdfs.fields``; ``.npz`` archives
store one array per signal, keyed by signal name.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from pathlib import Path

import numpy as np
import numpy.typing as npt

from sxmc.exceptions import ConfigurationError

log = logging.getLogger(__name__)


def read_table(path: str | os.PathLike[str], key: str) -> npt.NDArray[np.float64]:
    """
    Read one events x fields table.

    Args:
        path: ``.npy`` file, or ``.npz`` archive holding an array named ``key``
        key: Array name inside ``.npz`` archives

    Raises:
        ConfigurationError: If the file is missing, unreadable, not 2-dimensional,
            or the archive has no ``key`` array
    """
    path_obj = Path(path)
    try:
        if path_obj.suffix == ".npz":
            with np.load(path_obj) as archive:
                if key not in archive.files:
                    msg = f"{path_obj} has no array '{key}', found {archive.files}"
                    raise ConfigurationError(msg)
                table = np.asarray(archive[key], dtype=np.float64)
        else:
            table = np.asarray(np.load(path_obj), dtype=np.float64)
    except (OSError, ValueError) as exc:
        msg = f"Cannot read samples from {path_obj}: {exc}"
        raise ConfigurationError(msg) from exc

    if table.ndim != 2:
        msg = f"Samples in {path_obj} must be 2-dimensional, got shape {table.shape}"
        raise ConfigurationError(msg)
    return table


def load_samples(
    files: Sequence[str | os.PathLike[str]], key: str
) -> npt.NDArray[np.float64]:
    """
    Read and concatenate the sample tables of one signal.

    Raises:
        ConfigurationError: If no files are given or their widths disagree
    """
    if not files:
        msg = f"No sample files given for '{key}'"
        raise ConfigurationError(msg)

    tables = [read_table(path, key) for path in files]
    widths = {table.shape[1] for table in tables}
    if len(widths) != 1:
        msg = f"Sample files for '{key}' have different widths: {sorted(widths)}"
        raise ConfigurationError(msg)

    samples = np.concatenate(tables)
    log.debug("Read %d events for %s from %d files", len(samples), key, len(files))
    return samples


__all__ = ("load_samples", "read_table")
