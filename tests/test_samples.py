"""Tests for reading sample tables."""

from __future__ import annotations

import numpy as np
import pytest

from sxmc.exceptions import ConfigurationError
from sxmc.samples import load_samples, read_table


def test_read_npy(tmp_path):
    table = np.arange(6.0).reshape(3, 2)
    np.save(tmp_path / "a.npy", table)
    np.testing.assert_array_equal(read_table(tmp_path / "a.npy", "a"), table)


def test_read_npz_by_key(tmp_path):
    np.savez(tmp_path / "all.npz", a=np.zeros((2, 3)), b=np.ones((4, 3)))
    np.testing.assert_array_equal(read_table(tmp_path / "all.npz", "b"), np.ones((4, 3)))


def test_npz_missing_key(tmp_path):
    np.savez(tmp_path / "all.npz", a=np.zeros((2, 3)))
    with pytest.raises(ConfigurationError, match="has no array 'c'"):
        read_table(tmp_path / "all.npz", "c")


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read samples"):
        read_table(tmp_path / "missing.npy", "a")


def test_not_2d(tmp_path):
    np.save(tmp_path / "flat.npy", np.zeros(5))
    with pytest.raises(ConfigurationError, match="2-dimensional"):
        read_table(tmp_path / "flat.npy", "flat")


def test_load_concatenates(tmp_path):
    np.save(tmp_path / "a.npy", np.zeros((2, 3)))
    np.save(tmp_path / "b.npy", np.ones((3, 3)))
    samples = load_samples([tmp_path / "a.npy", tmp_path / "b.npy"], "s")
    assert samples.shape == (5, 3)
    np.testing.assert_array_equal(samples[2:], 1.0)


def test_load_width_mismatch(tmp_path):
    np.save(tmp_path / "a.npy", np.zeros((2, 3)))
    np.save(tmp_path / "b.npy", np.zeros((2, 4)))
    with pytest.raises(ConfigurationError, match="different widths"):
        load_samples([tmp_path / "a.npy", tmp_path / "b.npy"], "s")


def test_load_no_files():
    with pytest.raises(ConfigurationError, match="No sample files"):
        load_samples([], "s")
