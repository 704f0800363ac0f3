"""
Cost Weight Tuning
==================

Cross-entropy search over the relative cost weights.

The cte weight is held at 1, since only the ratios between weights matter;
the remaining six are searched in log space. Each sample is scored by one
or more closed-loop runs:

    score = distance_weight * distance + cte_weight * total_absolute_cte

with the defaults rewarding distance covered before crashing or running
out of time. Runs that fail outright score +inf.
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import CostWeights, ControllerConfig
from .exceptions import InvalidInputError, MpcPilotError
from .mpc.controller import Controller, ControllerState
from .mpc.simulation import Track, circular_track, simulate
from .mpc.telemetry import RunOutcome, outcome_for_close_code

logger = logging.getLogger(__name__)

# Weights searched, in CostWeights order after cte
SEARCHED_WEIGHTS = ("epsi", "speed", "steering", "throttle", "steering_rate", "throttle_rate")

# Header of the sample log, one column per SampleRecord.to_row entry
COLUMNS = (
    "max_runtime", "dt", "reference_speed",
    "cte_weight", "epsi_weight", "v_weight", "delta_weight", "throttle_weight",
    "delta_gap_weight", "throttle_gap_weight",
    "crashed", "runtime", "distance", "total_absolute_cte",
)

RunResult = Tuple[RunOutcome, Optional[Dict[str, Any]]]
RunFunction = Callable[[ControllerConfig], RunResult]


def simulated_run(
    config: ControllerConfig,
    track: Optional[Track] = None,
    tick: float = 0.1,
) -> RunResult:
    """
    One tuning run in the closed-loop simulator.

    Runs until the controller reports a crash or reaches max_runtime.

    Returns:
        (outcome, stats) where stats is None for a failed run
    """
    track = track or circular_track()
    config = config.with_updates(tuning=True)
    controller = Controller(config)
    n_steps = int(math.ceil(config.max_runtime / tick)) + 1
    try:
        simulate(controller, track, n_steps, tick=tick)
    except MpcPilotError as e:
        logger.warning("run failed: %s", e)
        return RunOutcome.FAILED, None

    if controller.state == ControllerState.RUNNING:
        controller.disconnect()
        return RunOutcome.FAILED, None
    outcome = outcome_for_close_code(controller.close_code)
    return outcome, controller.stats.to_dict()


@dataclass
class SampleRecord:
    """One evaluated sample: its configuration, outcome and score."""
    iteration: int
    values: List[float]
    crashed: Optional[bool]
    stats: Optional[Dict[str, Any]]
    score: float

    def to_row(self) -> List[Any]:
        """Flat row: the tuning knobs, then crashed and the run statistics."""
        stats = self.stats or {}
        return [
            *self.values,
            self.crashed,
            stats.get("runtime"),
            stats.get("distance"),
            stats.get("total_absolute_cte"),
        ]


@dataclass
class TuningResult:
    """
    Outcome of a tuning session.

    Attributes:
        best_weights: Weights of the best-scoring sample
        best_score: Its score
        mean: Final log-space mean of the searched weights
        stddev: Final log-space standard deviation
        history: (mean, stddev) after each iteration
        samples: Every evaluated sample
    """
    best_weights: CostWeights
    best_score: float
    mean: np.ndarray
    stddev: np.ndarray
    history: List[Tuple[np.ndarray, np.ndarray]] = field(default_factory=list)
    samples: List[SampleRecord] = field(default_factory=list)

    @property
    def weights(self) -> CostWeights:
        """Weights at the final mean."""
        return weights_from_log(self.mean)

    def rows(self) -> List[List[Any]]:
        """Sample log with the COLUMNS header first."""
        return [list(COLUMNS)] + [s.to_row() for s in self.samples]

    def write_csv(self, path) -> None:
        """Write the sample log to a CSV file."""
        with open(path, "w", newline="") as f:
            csv.writer(f).writerows(self.rows())
        logger.info("wrote %d samples to %s", len(self.samples), path)

    def __repr__(self) -> str:
        return (
            f"TuningResult(best_score={self.best_score:.4f}, "
            f"iterations={len(self.history)}, samples={len(self.samples)})"
        )


def weights_from_log(params: np.ndarray) -> CostWeights:
    """CostWeights with cte = 1 and the others exp(params)."""
    return CostWeights.from_sequence([1.0, *np.exp(params).tolist()])


class CrossEntropyTuner:
    """
    Cross-entropy method over the log cost weights.

    Each iteration draws n_samples from a diagonal Gaussian, scores them,
    fits a new mean and standard deviation to the n_elite best, and blends
    the fit with the previous parameters:

        mean <- smoothing * elite_mean + (1 - smoothing) * mean

    Args:
        base_config: Configuration the weights are applied to
        run: Run function (default: simulated_run on a circular track)
        n_samples: Samples per iteration
        n_elite: Samples kept to refit the distribution
        max_iters: Number of iterations
        smoothing: Weight of the new fit in the update
        initial_stddev: Starting log-space standard deviation
        n_trials: Runs averaged per sample
        distance_weight: Score weight on distance
        cte_weight: Score weight on total absolute cte
        seed: Random seed

    Example:
        >>> tuner = CrossEntropyTuner(ControllerConfig(), max_iters=5, seed=0)
        >>> result = tuner.solve()
        >>> result.best_weights
    """

    def __init__(
        self,
        base_config: Optional[ControllerConfig] = None,
        run: Optional[RunFunction] = None,
        n_samples: int = 100,
        n_elite: int = 10,
        max_iters: int = 20,
        smoothing: float = 0.5,
        initial_stddev: float = 3.0,
        n_trials: int = 1,
        distance_weight: float = -1.0,
        cte_weight: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        if n_samples < 1 or not 1 <= n_elite <= n_samples:
            raise InvalidInputError("need 1 <= n_elite <= n_samples")
        if max_iters < 1 or n_trials < 1:
            raise InvalidInputError("max_iters and n_trials must be positive")
        if not 0 < smoothing <= 1:
            raise InvalidInputError(f"smoothing must be in (0, 1], got {smoothing}")
        if not initial_stddev > 0:
            raise InvalidInputError("initial_stddev must be positive")

        self.base_config = base_config or ControllerConfig()
        self.run = run or simulated_run
        self.n_samples = n_samples
        self.n_elite = n_elite
        self.max_iters = max_iters
        self.smoothing = smoothing
        self.n_trials = n_trials
        self.distance_weight = distance_weight
        self.cte_weight = cte_weight
        self.rng = np.random.default_rng(seed)

        self.mean = np.zeros(len(SEARCHED_WEIGHTS))
        self.stddev = np.full(len(SEARCHED_WEIGHTS), float(initial_stddev))

    def score(self, outcome: RunOutcome, stats: Optional[Dict[str, Any]]) -> float:
        """Score of one run; lower is better."""
        if outcome == RunOutcome.FAILED or stats is None:
            return math.inf
        return (
            self.distance_weight * stats["distance"]
            + self.cte_weight * stats["total_absolute_cte"]
        )

    def evaluate(self, params: np.ndarray, iteration: int = 0) -> SampleRecord:
        """Run and score one sample of log weights."""
        config = self.base_config.with_updates(
            weights=weights_from_log(params), tuning=True
        )
        scores = []
        outcome, stats = RunOutcome.FAILED, None
        for _ in range(self.n_trials):
            outcome, stats = self.run(config)
            scores.append(self.score(outcome, stats))
        crashed = None if outcome == RunOutcome.FAILED else outcome == RunOutcome.CRASHED
        return SampleRecord(
            iteration=iteration,
            values=config.to_flat(),
            crashed=crashed,
            stats=stats,
            score=float(np.mean(scores)),
        )

    def solve(self) -> TuningResult:
        """Run the search."""
        samples: List[SampleRecord] = []
        history = []
        best: Optional[SampleRecord] = None
        best_params = self.mean.copy()

        for iteration in range(self.max_iters):
            params = self.rng.normal(
                self.mean, self.stddev, size=(self.n_samples, len(self.mean))
            )
            records = [self.evaluate(p, iteration) for p in params]
            samples.extend(records)
            scores = np.array([r.score for r in records])

            order = np.argsort(scores, kind="stable")
            if best is None or scores[order[0]] < best.score:
                best = records[order[0]]
                best_params = params[order[0]].copy()

            elite = params[order[:self.n_elite]]
            new_mean = elite.mean(axis=0)
            new_stddev = elite.std(axis=0)
            self.mean = self.smoothing * new_mean + (1 - self.smoothing) * self.mean
            self.stddev = self.smoothing * new_stddev + (1 - self.smoothing) * self.stddev
            history.append((self.mean.copy(), self.stddev.copy()))

            logger.info(
                "iteration %d: best=%.4f elite mean score=%.4f",
                iteration, scores[order[0]], float(np.mean(scores[order[:self.n_elite]])),
            )
            logger.debug("mean=%s stddev=%s", self.mean, self.stddev)

        return TuningResult(
            best_weights=weights_from_log(best_params),
            best_score=best.score,
            mean=self.mean.copy(),
            stddev=self.stddev.copy(),
            history=history,
            samples=samples,
        )
