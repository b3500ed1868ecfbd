"""Base simulator class with common functionality."""

import random
from typing import Optional


class BaseSimulator:
    """Base class for all models that need bounded random perturbation.

    Every model owns its own ``random.Random`` so a test can fix the
    sequence with a seed. Without a seed results vary run to run.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize the simulator.

        Args:
            seed: Random seed for reproducibility. If None, results will vary.
        """
        self._random = random.Random(seed)

    def _add_noise(self, value: float, noise_percent: float = 5.0) -> float:
        """
        Add random noise to a value.

        Args:
            value: Base value
            noise_percent: Maximum noise as percentage of value

        Returns:
            Value with noise applied
        """
        noise_factor = self._random.uniform(-noise_percent / 100, noise_percent / 100)
        return value * (1 + noise_factor)

    @staticmethod
    def _clamp(value: float, min_val: float, max_val: float) -> float:
        """Clamp value between min and max."""
        return max(min_val, min(max_val, value))
