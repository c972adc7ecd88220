from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flashdeck.config import Settings

# FSRS-6 default weights (w0..w20)
DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.212, 1.2931, 2.3065, 8.2956, 6.4133, 0.8334, 3.0194, 0.001, 1.8722,
    0.1666, 0.796, 1.4835, 0.0614, 0.2629, 1.6483, 0.6014, 1.8729, 0.5425,
    0.0912, 0.0658, 0.1542,
)

S_MIN = 0.01
D_MIN = 1.0
D_MAX = 10.0


@dataclass(frozen=True)
class SchedulerParameters:
    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    desired_retention: float = 0.9
    maximum_interval: int = 36500
    learning_steps: tuple[timedelta, ...] = (
        timedelta(minutes=1),
        timedelta(minutes=10),
    )
    relearning_steps: tuple[timedelta, ...] = (timedelta(minutes=10),)

    def __post_init__(self) -> None:
        if len(self.weights) != 21:
            raise ValueError(f"expected 21 FSRS weights, got {len(self.weights)}")
        if not all(math.isfinite(w) for w in self.weights):
            raise ValueError("FSRS weights must be finite")
        if self.weights[20] <= 0:
            raise ValueError("w20 (curve decay) must be positive")
        if not 0.0 < self.desired_retention < 1.0:
            raise ValueError("desired_retention must be between 0 and 1 (exclusive)")
        if self.maximum_interval < 1:
            raise ValueError("maximum_interval must be at least 1 day")
        for step in self.learning_steps + self.relearning_steps:
            if step <= timedelta(0):
                raise ValueError("learning steps must be positive durations")

    @property
    def decay(self) -> float:
        return -self.weights[20]

    @property
    def factor(self) -> float:
        # Chosen so that R(S, S) == 0.9
        return math.pow(0.9, 1.0 / self.decay) - 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerParameters:
        weights = DEFAULT_WEIGHTS
        if settings.fsrs_weights is not None:
            weights = tuple(float(w) for w in settings.fsrs_weights)
        return cls(
            weights=weights,
            desired_retention=settings.desired_retention,
            maximum_interval=settings.maximum_interval,
            learning_steps=tuple(
                timedelta(minutes=m) for m in settings.learning_steps_minutes
            ),
            relearning_steps=tuple(
                timedelta(minutes=m) for m in settings.relearning_steps_minutes
            ),
        )
