#!/usr/bin/env python3
"""Three-tier risk classification of error values and its RGB shading."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from matplotlib.colors import ListedColormap

from harness_errors import OutOfRange

LOW_RISK = 1
MEDIUM_RISK = 2
HIGH_RISK = 3

LOW_RISK_BELOW = 1.0
HIGH_RISK_ABOVE = 5.0

RISK_LABELS = {LOW_RISK: "low", MEDIUM_RISK: "medium", HIGH_RISK: "high"}

# Green, yellow, red at label positions 1, 2, 3.
RISK_COLORMAP = ListedColormap(
    [(0.0, 1.0, 0.0), (1.0, 1.0, 0.0), (1.0, 0.0, 0.0)], name="risk"
)


@dataclass(frozen=True, eq=False)
class RiskClassification:
    labels: np.ndarray
    rgb: np.ndarray

    def count(self, label: int) -> int:
        return int(np.count_nonzero(self.labels == label))


def classify_risk(errors: np.ndarray) -> np.ndarray:
    """
    Label each error: 1 for ``e < 1``, 2 for ``1 <= e <= 5``, 3 for ``e > 5``.

    The three ranges partition ``[0, inf)``; negative or non-finite input is
    rejected.
    """
    errors = np.asarray(errors, dtype=np.float64)
    if not np.all(np.isfinite(errors)):
        raise OutOfRange("Risk classification requires finite error values.")
    if np.any(errors < 0):
        raise OutOfRange("Risk classification requires non-negative error values.")
    labels = np.full(errors.shape, MEDIUM_RISK, dtype=np.int64)
    labels[errors < LOW_RISK_BELOW] = LOW_RISK
    labels[errors > HIGH_RISK_ABOVE] = HIGH_RISK
    return labels


def shade_risk(labels: np.ndarray) -> np.ndarray:
    """RGB array of shape ``labels.shape + (3,)`` taken from ``RISK_COLORMAP``."""
    labels = np.asarray(labels, dtype=np.int64)
    # Integer input indexes the colormap lookup table directly.
    return RISK_COLORMAP(labels - LOW_RISK)[..., :3]


def map_risk(errors: np.ndarray) -> RiskClassification:
    labels = classify_risk(errors)
    return RiskClassification(labels=labels, rgb=shade_risk(labels))
