"""Histograms over fixed bin edges and mean/median/histogram summaries of sorted error samples.

A bin is identified by its upper edge: a sample falls into the first bin whose edge is >= the sample. Samples
larger than the last edge land in an implicit overflow bin, so a histogram with K edges has K + 1 counts.
"""

from dataclasses import dataclass
from typing import List, Sequence, Union

import numpy as np

from recon_compare.common.exceptions import InvalidInputError

Number = Union[int, float]


def _format_bins(bin_edges: Sequence[Number], counts: np.ndarray, cumulative_counts: np.ndarray) -> str:
    """Render one line per bin, e.g. `  <= 5: 3 (cumulative 7)`, followed by the overflow bin."""
    lines = [
        f"  <= {edge:g}: {count} (cumulative {total})"
        for edge, count, total in zip(bin_edges, counts, cumulative_counts)
    ]
    lines.append(f"  > {bin_edges[-1]:g}: {counts[-1]} (cumulative {cumulative_counts[-1]})")
    return "\n".join(lines)


def validate_bin_edges(bin_edges: Sequence[Number]) -> np.ndarray:
    """Check that the bin edges are non-empty and strictly increasing.

    Raises:
        InvalidInputError: If the edges are empty, not 1D, or not strictly increasing.
    """
    edges = np.asarray(bin_edges, dtype=np.float64)
    if edges.ndim != 1 or edges.size == 0:
        raise InvalidInputError("Histogram bin edges must be a non-empty 1D sequence.")
    if np.any(np.diff(edges) <= 0):
        raise InvalidInputError(f"Histogram bin edges must be strictly increasing, got {list(bin_edges)}.")
    return edges


class Histogram:
    """Accumulates counts of samples over fixed bin edges."""

    def __init__(self, bin_edges: Sequence[Number]) -> None:
        self._edges = validate_bin_edges(bin_edges)
        self._bin_edges = list(bin_edges)
        self._counts = np.zeros(len(self._bin_edges) + 1, dtype=np.int64)

    @property
    def bin_edges(self) -> List[Number]:
        return list(self._bin_edges)

    def add(self, value: Number) -> None:
        """Add a single sample."""
        self._counts[np.searchsorted(self._edges, value, side="left")] += 1

    def add_all(self, values: Sequence[Number]) -> None:
        """Add a batch of samples."""
        values = np.asarray(values, dtype=np.float64)
        if values.size == 0:
            return
        bin_idxs = np.searchsorted(self._edges, values, side="left")
        self._counts += np.bincount(bin_idxs, minlength=self._counts.size)

    def counts(self) -> np.ndarray:
        """Per-bin counts; the final entry is the overflow bin."""
        return self._counts.copy()

    def cumulative_counts(self) -> np.ndarray:
        """Number of samples <= each edge; the final entry is the total number of samples."""
        return np.cumsum(self._counts)

    def num_samples(self) -> int:
        return int(self._counts.sum())

    def to_string(self) -> str:
        return _format_bins(self._bin_edges, self._counts, self.cumulative_counts())


@dataclass(frozen=True)
class HistogramSummary:
    """Mean, median and histogram of a set of error samples."""

    mean: float
    median: float
    bin_edges: List[Number]
    bin_counts: np.ndarray
    cumulative_counts: np.ndarray
    num_samples: int

    def to_string(self) -> str:
        histogram_str = _format_bins(self.bin_edges, self.bin_counts, self.cumulative_counts)
        return f"Mean = {self.mean:f}\nMedian = {self.median:f}\nHistogram:\n{histogram_str}"


def summarize_sorted_errors(sorted_errors: Sequence[float], bin_edges: Sequence[Number]) -> HistogramSummary:
    """Compute the mean, median and histogram of errors which are already sorted in ascending order.

    The median is the element at index n // 2, i.e. the upper-middle element for an even number of samples. No
    interpolation is done, which keeps results comparable with reference outputs.

    Args:
        sorted_errors: Error samples in ascending order. They are not re-sorted here.
        bin_edges: Strictly increasing upper edges of the histogram bins.

    Returns:
        Summary of the errors.

    Raises:
        InvalidInputError: If there are no samples or the bin edges are invalid.
    """
    errors = np.asarray(sorted_errors, dtype=np.float64)
    if errors.ndim != 1 or errors.size == 0:
        raise InvalidInputError("Cannot summarize an empty set of errors.")

    histogram = Histogram(bin_edges)
    histogram.add_all(errors)

    return HistogramSummary(
        mean=float(np.mean(errors)),
        median=float(errors[errors.size // 2]),
        bin_edges=histogram.bin_edges,
        bin_counts=histogram.counts(),
        cumulative_counts=histogram.cumulative_counts(),
        num_samples=int(errors.size),
    )
