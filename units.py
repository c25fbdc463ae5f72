"""Temperature unit conversions for values entering and leaving the engine."""

from __future__ import annotations

from typing import TypeVar

import numpy as np

Temperature = TypeVar("Temperature", float, np.ndarray)


def fahrenheit_to_celsius(temp: Temperature) -> Temperature:
    """Convert °F to °C. Accepts scalars or numpy arrays."""
    return (temp - 32.0) * 5.0 / 9.0


def celsius_to_fahrenheit(temp: Temperature) -> Temperature:
    """Convert °C to °F. Accepts scalars or numpy arrays."""
    return temp * 9.0 / 5.0 + 32.0
