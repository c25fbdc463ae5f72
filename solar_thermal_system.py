"""Solar thermal loop simulation: request handling, tables and plots."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from solar_thermal_loop import (
    W_M2_TO_MJ_M2_H,
    SimulationParameters,
    SimulationState,
    StepResult,
    pump_mass_flow_rate,
    simulate_temperature,
    solar_irradiance,
)
from units import celsius_to_fahrenheit, fahrenheit_to_celsius

# Request body names → SimulationParameters fields
REQUEST_FIELDS = {
    "area": "panel_area",
    "efficiency": "panel_efficiency",
    "pumpPower": "pump_power",
    "hour": "start_hour",
    "duration": "duration",
    "minAmbientTemp": "min_ambient_temp",
    "maxAmbientTemp": "max_ambient_temp",
    "cloudCover": "cloud_cover",
    "specificHeat": "fluid_specific_heat",
    "fluidTemp": "fluid_temp",
    "transmittance": "transmittance",
    "absorptance": "absorptance",
    "tankVolume": "tank_volume",
    "tankTemp": "tank_temp",
    "pumpEfficiency": "pump_efficiency",
    "hydraulicHead": "hydraulic_head",
    "U_L": "heat_loss_coefficient",
    "fixedTemp": "fixed_ambient_temp",
    "density": "fluid_density",
    "timeStep": "time_step_seconds",
}
# Request fields given in °F
FAHRENHEIT_FIELDS = frozenset(
    ("minAmbientTemp", "maxAmbientTemp", "fluidTemp", "tankTemp", "fixedTemp")
)


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == "None"


def _request_to_fields(body: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate request names and units to SimulationParameters fields (°C)."""
    fields: Dict[str, Any] = {}
    for key, value in body.items():
        name = REQUEST_FIELDS.get(key)
        if name is None:
            continue
        if _is_missing(value):
            # An explicit "None" fixed temperature switches back to the sine model
            if key == "fixedTemp":
                fields[name] = None
            continue
        number = float(value)
        if key in FAHRENHEIT_FIELDS:
            number = fahrenheit_to_celsius(number)
        fields[name] = int(number) if name == "duration" else number
    return fields


class SolarThermalSystem:
    """Collector → fluid → tank loop with scheduled parameter changes."""

    def __init__(
        self,
        params: Optional[SimulationParameters] = None,
        changes: Optional[Mapping[int, Mapping[str, Any]]] = None,
        start_step: int = 0,
        state: Optional[SimulationState] = None,
    ) -> None:
        """
        Args:
            params: Parameters at the first simulated step (defaults if None).
            changes: Overrides keyed by step index, in °C.
            start_step: First step to compute.
            state: Carried temperatures to resume from (°C).
        """
        self.params = params or SimulationParameters()
        self.changes: Dict[int, Mapping[str, Any]] = dict(changes or {})
        self.start_step = start_step
        self.state = state

    @classmethod
    def from_request(cls, body: Mapping[str, Any]) -> "SolarThermalSystem":
        """
        Build a system from a request body using °F temperatures.

        Missing values take the SimulationParameters defaults. ``inputChanges``
        maps step → partial body, ``startHour`` is the step to resume from and
        ``currentState`` holds the °F ``fluidTemp``, ``panelTemp`` and
        ``tankTemp`` to resume with.
        """
        params = SimulationParameters(**_request_to_fields(body))

        changes = {
            int(step): _request_to_fields(change)
            for step, change in (body.get("inputChanges") or {}).items()
        }

        state = None
        current_state = body.get("currentState")
        if current_state:
            state = SimulationState(
                fluid_temp=fahrenheit_to_celsius(float(current_state["fluidTemp"])),
                plate_temp=fahrenheit_to_celsius(float(current_state["panelTemp"])),
                tank_temp=fahrenheit_to_celsius(float(current_state["tankTemp"])),
            )

        start_step = int(body.get("startHour") or 0)
        return cls(params, changes, start_step, state)

    def simulate(self) -> List[StepResult]:
        """Run the loop with this system's parameters, changes and start state."""
        return simulate_temperature(
            self.params, self.changes, start_step=self.start_step, state=self.state
        )

    @staticmethod
    def results_in_fahrenheit(results: List[StepResult]) -> List[Dict[str, float]]:
        """Convert results to the response rows of the HTTP service (°F)."""
        return [
            {
                "time": r.step,
                "fluidTemp": celsius_to_fahrenheit(r.fluid_temp),
                "panelTemp": celsius_to_fahrenheit(r.plate_temp),
                "tankTemp": celsius_to_fahrenheit(r.tank_temp),
                "ambientTemp": celsius_to_fahrenheit(r.ambient_temp),
            }
            for r in results
        ]

    def _params_by_step(
        self, results: List[StepResult]
    ) -> Iterator[Tuple[StepResult, SimulationParameters]]:
        """Pair each result with the parameter snapshot in force at its step."""
        current = self.params
        for result in results:
            change = self.changes.get(result.step)
            if change:
                current = current.with_changes(change)
            yield result, current

    def _initial_tank_temp(self) -> float:
        if self.state is not None:
            return self.state.tank_temp
        return self.params.tank_temp

    def results_dataframe(self, results: List[StepResult]) -> pd.DataFrame:
        """
        Tabulate results, one row per step.

        Adds the hour of day, the cloud-attenuated irradiance (W/m²) and the
        energy held in the tank (MJ) above its starting temperature, using the
        tank volume in force at each step.
        """
        initial_tank = self._initial_tank_temp()
        rows: List[Dict[str, float]] = []
        for result, params in self._params_by_step(results):
            hour = (self.params.start_hour + result.step) % 24
            # Capacity of the tank in force at this step, so a volume change
            # rescales the energy held above the starting temperature.
            tank_capacity = (
                params.tank_volume * params.fluid_density * params.fluid_specific_heat
            )  # J/K
            rows.append(
                {
                    **result.as_dict(),
                    "hour": hour,
                    "irradiance": solar_irradiance(hour, params.cloud_cover)
                    / W_M2_TO_MJ_M2_H,
                    "tank_energy_MJ": (result.tank_temp - initial_tank)
                    * tank_capacity
                    / 1e6,
                }
            )
        columns = [
            "step",
            "hour",
            "irradiance",
            "ambient_temp",
            "fluid_temp",
            "plate_temp",
            "tank_temp",
            "tank_energy_MJ",
        ]
        return pd.DataFrame(rows, columns=columns).set_index("step")

    def summary_dataframe(self, results: List[StepResult]) -> pd.DataFrame:
        """Print and return a pandas DataFrame of run-level metrics."""
        if not results:
            print("No steps simulated.")
            return pd.DataFrame(columns=["Value"])

        df = self.results_dataframe(results)
        initial_tank = self._initial_tank_temp()
        mass_flow = pump_mass_flow_rate(
            self.params.pump_power,
            self.params.pump_efficiency,
            self.params.hydraulic_head,
            self.params.fluid_density,
        )

        summary = {
            "Collector Area (m²)": [self.params.panel_area],
            "Tank Volume (m³)": [self.params.tank_volume],
            "Mass Flow Rate (kg/s)": [mass_flow],
            "Steps Simulated": [len(df)],
            "Initial Tank Temp (°C)": [initial_tank],
            "Final Tank Temp (°C)": [df["tank_temp"].iloc[-1]],
            "Temperature Rise (°C)": [df["tank_temp"].iloc[-1] - initial_tank],
            "Max Tank Temp (°C)": [df["tank_temp"].max()],
            "Min Tank Temp (°C)": [df["tank_temp"].min()],
            "Peak Plate Temp (°C)": [df["plate_temp"].max()],
            "Peak Fluid Temp (°C)": [df["fluid_temp"].max()],
            "Peak Solar Irradiance (W/m²)": [df["irradiance"].max()],
            "Energy Stored in Tank (MJ)": [df["tank_energy_MJ"].iloc[-1]],
        }

        summary_df = pd.DataFrame(summary).T
        summary_df.columns = ["Value"]
        print(summary_df)
        return summary_df

    def plot_results(self, results: List[StepResult], show: bool = True):
        """Plot loop temperatures and irradiance against step."""
        df = self.results_dataframe(results)
        fig, axes = plt.subplots(2, 1, figsize=(12, 9), sharex=True)

        # Temperature profiles
        ax1 = axes[0]
        ax1.plot(df.index, df["fluid_temp"], "r-", label="Fluid", linewidth=2)
        ax1.plot(df.index, df["plate_temp"], "m-", label="Plate", linewidth=2)
        ax1.plot(df.index, df["tank_temp"], "b-", label="Tank", linewidth=2)
        ax1.plot(df.index, df["ambient_temp"], "k--", label="Ambient", alpha=0.5)
        ax1.set_ylabel("Temperature (°C)")
        ax1.set_title("Loop Temperatures")
        ax1.legend()
        ax1.grid(True, alpha=0.3)

        # Solar input
        ax2 = axes[1]
        ax2.plot(df.index, df["irradiance"], "y-", label="Solar Irradiance", linewidth=2)
        ax2.set_xlabel("Step (hours)")
        ax2.set_ylabel("Solar Irradiance (W/m²)", color="orange")
        ax2.set_title("Solar Input")
        ax2.grid(True, alpha=0.3)

        plt.tight_layout()
        if show:
            plt.show()
        return fig

    def print_key_metrics(self, results: List[StepResult]) -> None:
        """Print key metrics as text for quick inspection."""
        print("\n=== KEY METRICS OUTPUT ===")
        if not results:
            print("\nNo steps simulated.")
            return

        df = self.results_dataframe(results)

        print("\nTank Temperature (°C) - Every 24 steps:")
        for step, row in df.iterrows():
            if step % 24 == 0:
                print(f"  Step {step:4d} (Day {step / 24.0:4.1f}): {row['tank_temp']:7.3f}°C")

        print("\nPlate Temperature (°C) - At noon:")
        noon = df[np.isclose(df["hour"], 12.0)]
        for step, row in noon.iterrows():
            print(f"  Step {step:4d}: {row['plate_temp']:7.2f}°C")

        print("\nSUMMARY:")
        print(f"  Initial Tank Temp: {self._initial_tank_temp():7.3f}°C")
        print(f"  Final Tank Temp:   {df['tank_temp'].iloc[-1]:7.3f}°C")
        print(f"  Max Fluid Temp:    {df['fluid_temp'].max():7.3f}°C")
        print(f"  Max Plate Temp:    {df['plate_temp'].max():7.3f}°C")
        print(f"  Energy Stored:     {df['tank_energy_MJ'].iloc[-1]:7.3f} MJ")
