"""Hour-by-hour simulation of a solar collector, circulating fluid and storage tank."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

logger = logging.getLogger(__name__)

# Daylight window (hour of day)
SUNRISE_HOUR = 6.0
SUNSET_HOUR = 18.0
# Clear-sky irradiance at solar noon (W/m²)
PEAK_IRRADIANCE = 1000.0
# 1 W/m² sustained for an hour = 0.0036 MJ/m²
W_M2_TO_MJ_M2_H = 0.0036
GRAVITY = 9.81  # m/s²
SECONDS_PER_HOUR = 3600.0

# Run settings fixed for the whole run; scheduled changes may not set them
RUN_SETTINGS = ("start_hour", "duration")


class InvalidParameterError(ValueError):
    """Raised when a parameter would make a heat-transfer relation undefined."""


@dataclass(frozen=True)
class SimulationParameters:
    """
    Operating parameters of the loop, in SI units and °C.

    One snapshot is used per step; scheduled changes produce a new snapshot
    rather than editing this one.
    """

    # Collector
    panel_area: float = 2.0  # m²
    panel_efficiency: float = 0.15  # F', plate efficiency factor
    transmittance: float = 0.9  # -
    absorptance: float = 0.95  # -
    heat_loss_coefficient: float = 8.0  # U_L, W/(m²·K)

    # Heat transfer fluid
    fluid_specific_heat: float = 4186.0  # J/(kg·K)
    fluid_density: float = 1000.0  # kg/m³

    # Pump
    pump_power: float = 50.0  # W
    hydraulic_head: float = 5.0  # m
    pump_efficiency: float = 0.7  # -

    # Storage tank
    tank_volume: float = 1000.0  # m³

    # Weather
    cloud_cover: float = 0.0  # %
    fixed_ambient_temp: Optional[float] = None  # °C
    min_ambient_temp: float = 10.0  # °C
    max_ambient_temp: float = 20.0  # °C

    # Run settings
    time_step_seconds: float = SECONDS_PER_HOUR
    start_hour: float = 0.0  # hour of day at step 0
    duration: int = 24  # steps
    fluid_temp: float = 20.0  # initial fluid temperature, °C
    tank_temp: float = 20.0  # initial tank temperature, °C

    def with_changes(self, changes: Mapping[str, Any]) -> "SimulationParameters":
        """
        Return a new snapshot with ``changes`` applied on top of this one.

        Raises:
            InvalidParameterError: If a key does not name a parameter.
        """
        names = {field.name for field in dataclasses.fields(self)}
        unknown = sorted(set(changes) - names)
        if unknown:
            raise InvalidParameterError(f"Unknown simulation parameter(s): {unknown}")
        return dataclasses.replace(self, **dict(changes))


@dataclass(frozen=True)
class SimulationState:
    """Temperatures carried from one step to the next (°C)."""

    fluid_temp: float
    plate_temp: float
    tank_temp: float

    @classmethod
    def initial(cls, params: SimulationParameters) -> "SimulationState":
        """Starting state: the plate begins at the fluid temperature."""
        return cls(
            fluid_temp=params.fluid_temp,
            plate_temp=params.fluid_temp,
            tank_temp=params.tank_temp,
        )


@dataclass(frozen=True)
class CollectorGain:
    """Output of the collector energy balance for one step."""

    useful_gain_per_area: float  # q_u, MJ/(m²·h)
    heat_removal_factor: float  # F_R
    flow_factor: float  # F''


@dataclass(frozen=True)
class FluidTemperatures:
    fluid_temp: float  # °C
    plate_temp: float  # °C


@dataclass(frozen=True)
class StepResult:
    """Temperatures at the end of one simulated step (°C)."""

    step: int
    fluid_temp: float
    plate_temp: float
    tank_temp: float
    ambient_temp: float

    def as_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)


def solar_irradiance(hour: float, cloud_cover: float = 0.0) -> float:
    """
    Return solar irradiance in MJ/m² per hour from a daily cosine² model.

    Peak of 1000 W/m² at noon, zero outside 06:00–18:00. Cloud cover (%)
    attenuates linearly and is not clamped.
    """
    if hour < SUNRISE_HOUR or hour > SUNSET_HOUR:
        return 0.0
    angle = np.pi * (hour - SUNRISE_HOUR) / (SUNSET_HOUR - SUNRISE_HOUR)
    irradiance = PEAK_IRRADIANCE * np.cos(angle - np.pi / 2.0) ** 2  # W/m²
    return float(irradiance * (1.0 - cloud_cover / 100.0) * W_M2_TO_MJ_M2_H)


def pump_mass_flow_rate(
    pump_power: float, pump_efficiency: float, hydraulic_head: float, density: float
) -> float:
    """
    Compute the mass flow rate (kg/s) a pump delivers against a hydraulic head.

    Volumetric flow is P·η / (H·g·ρ) in m³/s; multiplying by ρ gives kg/s.

    Raises:
        InvalidParameterError: If the head or the density is not positive.
    """
    if hydraulic_head <= 0.0 or density <= 0.0:
        raise InvalidParameterError(
            "hydraulic_head and fluid_density must be positive, got "
            f"{hydraulic_head} and {density}"
        )
    volumetric_flow_rate = (pump_power * pump_efficiency) / (
        hydraulic_head * GRAVITY * density
    )  # m³/s
    return volumetric_flow_rate * density


def collector_gain(
    hour: float,
    params: SimulationParameters,
    ambient_temp: float,
    plate_temp: float,
    mass_flow_rate: Optional[float] = None,
) -> CollectorGain:
    """
    Compute the useful energy gain of the collector (Hottel-Whillier-Bliss).

    Q_u = F_R · A · [S·τ·α − U_L·(T_plate − T_ambient)]

    Args:
        hour: Hour of day.
        params: Current operating parameters.
        ambient_temp: Ambient temperature (°C).
        plate_temp: Absorber plate temperature (°C).
        mass_flow_rate: Fluid mass flow (kg/s); derived from the pump when None.

    Returns:
        Useful gain per unit area (MJ/(m²·h), may be negative), F_R and F''.

    Raises:
        InvalidParameterError: If there is flow but area, U_L or F' is not
            positive.
    """
    if mass_flow_rate is None:
        mass_flow_rate = pump_mass_flow_rate(
            params.pump_power,
            params.pump_efficiency,
            params.hydraulic_head,
            params.fluid_density,
        )

    area = params.panel_area
    u_l = params.heat_loss_coefficient
    f_prime = params.panel_efficiency

    if mass_flow_rate > 0.0:
        if area <= 0.0 or u_l <= 0.0 or f_prime <= 0.0:
            raise InvalidParameterError(
                "panel_area, heat_loss_coefficient and panel_efficiency must be "
                f"positive when fluid is flowing, got {area}, {u_l} and {f_prime}"
            )
        # Dimensionless capacitance rate ṁ·c_p / (A·U_L·F')
        capacitance_rate = (mass_flow_rate * params.fluid_specific_heat) / (
            area * u_l * f_prime
        )
        flow_factor = float(capacitance_rate * (1.0 - np.exp(-1.0 / capacitance_rate)))
        heat_removal_factor = flow_factor * f_prime
    else:
        # Stagnant collector, nothing is carried away by the fluid
        flow_factor = 0.0
        heat_removal_factor = 0.0

    irradiance = solar_irradiance(hour, params.cloud_cover)  # MJ/(m²·h)
    loss = u_l * (plate_temp - ambient_temp) * SECONDS_PER_HOUR / 1e6  # MJ/(m²·h)

    useful_gain = heat_removal_factor * area * (
        irradiance * params.transmittance * params.absorptance - loss
    )
    # Zero area only reaches here with no flow, where the gain is zero too.
    useful_gain_per_area = useful_gain / area if area else 0.0

    return CollectorGain(
        useful_gain_per_area=useful_gain_per_area,
        heat_removal_factor=heat_removal_factor,
        flow_factor=flow_factor,
    )


def update_fluid(
    gain: CollectorGain, current_fluid_temp: float, heat_loss_coefficient: float
) -> FluidTemperatures:
    """
    Compute the mean fluid and plate temperatures after the collector gain.

    Flowing collector (Duffie & Beckman, mean fluid/plate relations):
        T_fluid = T_in + q_u / (F_R·U_L) · (1 − F'')
        T_plate = T_in + q_u / (F_R·U_L) · (1 − F_R)

    With F_R == 0 the fluid does not circulate: its temperature is unchanged
    and the plate sits q_u / U_L above it.

    Raises:
        InvalidParameterError: If U_L is not positive.
    """
    if heat_loss_coefficient <= 0.0:
        raise InvalidParameterError(
            f"heat_loss_coefficient must be positive, got {heat_loss_coefficient}"
        )

    q_u = gain.useful_gain_per_area
    f_r = gain.heat_removal_factor

    if f_r == 0.0:
        return FluidTemperatures(
            fluid_temp=current_fluid_temp,
            plate_temp=current_fluid_temp + q_u / heat_loss_coefficient,
        )

    q_u_watts = q_u * 1e6 / SECONDS_PER_HOUR  # W/m²
    rise = q_u_watts / (f_r * heat_loss_coefficient)  # K
    return FluidTemperatures(
        fluid_temp=current_fluid_temp + rise * (1.0 - gain.flow_factor),
        plate_temp=current_fluid_temp + rise * (1.0 - f_r),
    )


def update_tank(
    fluid_temp: float,
    tank_temp: float,
    tank_volume: float,
    specific_heat: float,
    time_step: float,
    pump_power: float,
    hydraulic_head: float,
    pump_efficiency: float,
    density: float,
) -> float:
    """
    Return the tank temperature (°C) after exchanging heat with the fluid.

    The tank is fully mixed; the heat delivered over one step is
    ṁ·c_p·(T_fluid − T_tank)·Δt, negative when the tank is the warmer side.

    Args:
        fluid_temp: Fluid temperature entering the tank (°C).
        tank_temp: Current tank temperature (°C).
        tank_volume: Tank volume (m³).
        specific_heat: Fluid specific heat (J/(kg·K)).
        time_step: Step length (s).
        pump_power: Pump shaft power (W).
        hydraulic_head: Pump head (m).
        pump_efficiency: Pump efficiency (-).
        density: Fluid density (kg/m³).

    Raises:
        InvalidParameterError: If the tank has no thermal capacity.
    """
    # The tank side sizes its own flow from the pump curve.
    mass_flow_rate = pump_mass_flow_rate(
        pump_power, pump_efficiency, hydraulic_head, density
    )  # kg/s

    thermal_capacity = tank_volume * density * specific_heat  # J/K
    if thermal_capacity <= 0.0:
        raise InvalidParameterError(
            "tank_volume and fluid_specific_heat must be positive, got "
            f"{tank_volume} and {specific_heat}"
        )

    heat_transfer_rate = mass_flow_rate * specific_heat * (fluid_temp - tank_temp)  # W
    return tank_temp + heat_transfer_rate * time_step / thermal_capacity


def ambient_temperature(hour: float, params: SimulationParameters) -> float:
    """
    Return the ambient temperature (°C) at ``hour``.

    Uses ``fixed_ambient_temp`` when set, otherwise a sine between the daily
    minimum (about 06:00) and maximum (about 18:00).
    """
    if params.fixed_ambient_temp is not None:
        return params.fixed_ambient_temp
    amplitude = (params.max_ambient_temp - params.min_ambient_temp) / 2.0
    midpoint = (params.max_ambient_temp + params.min_ambient_temp) / 2.0
    return float(midpoint + amplitude * np.sin((hour - 6.0) * np.pi / 12.0))


def simulate_temperature(
    params: SimulationParameters,
    changes: Optional[Mapping[int, Mapping[str, Any]]] = None,
    start_step: int = 0,
    state: Optional[SimulationState] = None,
) -> List[StepResult]:
    """
    Step the loop from ``start_step`` to ``params.duration - 1``.

    Args:
        params: Parameters in force at the first step.
        changes: Overrides keyed by the step at which they take effect. They
            persist for later steps. ``fluid_temp``/``tank_temp`` entries also
            reset the carried temperatures; ``start_hour``/``duration`` are
            rejected.
        start_step: First step to compute, for resuming a run.
        state: Carried temperatures to resume from; built from ``params``
            when None.

    Returns:
        One result per step, in step order.

    Raises:
        InvalidParameterError: On a negative ``start_step``, an unknown or
            run-setting override key, or parameters that break a heat-transfer relation.
    """
    if start_step < 0:
        raise InvalidParameterError(f"start_step must be non-negative, got {start_step}")

    changes = changes or {}
    current = params
    if state is None:
        state = SimulationState.initial(params)
    fluid_temp, plate_temp, tank_temp = state.fluid_temp, state.plate_temp, state.tank_temp

    logger.info(
        "Simulating steps %d..%d from fluid %.2f °C, tank %.2f °C",
        start_step,
        params.duration - 1,
        fluid_temp,
        tank_temp,
    )

    results: List[StepResult] = []
    for step in range(start_step, params.duration):
        change = changes.get(step)
        if change:
            fixed = sorted(set(change) & set(RUN_SETTINGS))
            if fixed:
                raise InvalidParameterError(
                    f"Step {step}: run setting(s) {fixed} cannot be changed mid-run"
                )
            logger.debug("Step %d: applying %s", step, dict(change))
            current = current.with_changes(change)
            if "fluid_temp" in change:
                fluid_temp = plate_temp = current.fluid_temp
            if "tank_temp" in change:
                tank_temp = current.tank_temp

        hour = (params.start_hour + step) % 24
        ambient = ambient_temperature(hour, current)

        gain = collector_gain(hour, current, ambient, plate_temp)
        fluid = update_fluid(gain, fluid_temp, current.heat_loss_coefficient)
        fluid_temp, plate_temp = fluid.fluid_temp, fluid.plate_temp

        tank_temp = update_tank(
            fluid_temp,
            tank_temp,
            current.tank_volume,
            current.fluid_specific_heat,
            current.time_step_seconds,
            current.pump_power,
            current.hydraulic_head,
            current.pump_efficiency,
            current.fluid_density,
        )

        logger.debug(
            "Step %d (hour %.1f): fluid %.3f, plate %.3f, tank %.3f, ambient %.2f",
            step,
            hour,
            fluid_temp,
            plate_temp,
            tank_temp,
            ambient,
        )
        results.append(
            StepResult(
                step=step,
                fluid_temp=fluid_temp,
                plate_temp=plate_temp,
                tank_temp=tank_temp,
                ambient_temp=ambient,
            )
        )

    if results:
        logger.info("Finished at step %d, tank %.2f °C", results[-1].step, tank_temp)
    return results
