"""Tests for SolarThermalSystem: request mapping, unit handling and reports."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from solar_thermal_loop import SimulationParameters, SimulationState
from solar_thermal_system import SolarThermalSystem
from units import celsius_to_fahrenheit, fahrenheit_to_celsius

REL_TOL = 1e-9
ABS_TOL = 1e-9


def test_unit_conversions() -> None:
    assert fahrenheit_to_celsius(32.0) == pytest.approx(0.0, abs=ABS_TOL)
    assert fahrenheit_to_celsius(212.0) == pytest.approx(100.0, rel=REL_TOL)
    assert celsius_to_fahrenheit(-40.0) == pytest.approx(-40.0, rel=REL_TOL)
    temps = np.array([0.0, 20.0, 100.0])
    assert np.allclose(fahrenheit_to_celsius(celsius_to_fahrenheit(temps)), temps)


def test_from_request_defaults() -> None:
    system = SolarThermalSystem.from_request({})
    assert system.params == SimulationParameters()
    assert system.changes == {}
    assert system.start_step == 0
    assert system.state is None


def test_from_request_converts_fahrenheit() -> None:
    body = {
        "area": "3.5",
        "efficiency": 0.8,
        "duration": "48",
        "fluidTemp": 68,
        "tankTemp": 104,
        "minAmbientTemp": 50,
        "maxAmbientTemp": 86,
        "fixedTemp": "None",
        "U_L": 6,
        "unused": "ignored",
    }
    params = SolarThermalSystem.from_request(body).params

    assert params.panel_area == 3.5
    assert params.panel_efficiency == 0.8
    assert params.duration == 48
    assert params.fluid_temp == pytest.approx(20.0, rel=REL_TOL)
    assert params.tank_temp == pytest.approx(40.0, rel=REL_TOL)
    assert params.min_ambient_temp == pytest.approx(10.0, rel=REL_TOL)
    assert params.max_ambient_temp == pytest.approx(30.0, rel=REL_TOL)
    assert params.fixed_ambient_temp is None
    assert params.heat_loss_coefficient == 6.0


def test_from_request_fixed_ambient() -> None:
    system = SolarThermalSystem.from_request({"fixedTemp": 50})
    assert system.params.fixed_ambient_temp == pytest.approx(10.0, rel=REL_TOL)
    results = system.simulate()
    assert all(r.ambient_temp == pytest.approx(10.0, rel=REL_TOL) for r in results)


def test_from_request_input_changes_and_resume_state() -> None:
    body = {
        "duration": 24,
        "startHour": 6,
        "inputChanges": {"12": {"cloudCover": 50, "tankTemp": 104}},
        "currentState": {"fluidTemp": 86, "panelTemp": 95, "tankTemp": 77},
    }
    system = SolarThermalSystem.from_request(body)

    assert system.start_step == 6
    assert system.changes == {12: {"cloud_cover": 50.0, "tank_temp": pytest.approx(40.0)}}
    assert system.state == SimulationState(
        fluid_temp=pytest.approx(30.0),
        plate_temp=pytest.approx(35.0),
        tank_temp=pytest.approx(25.0),
    )

    results = system.simulate()
    assert [r.step for r in results] == list(range(6, 24))
    # The tank was reset to 40 °C at step 12
    assert results[6].tank_temp == pytest.approx(40.0, abs=0.1)


def test_results_in_fahrenheit() -> None:
    system = SolarThermalSystem()
    results = system.simulate()
    rows = SolarThermalSystem.results_in_fahrenheit(results)

    assert len(rows) == len(results) == 24
    assert set(rows[0]) == {"time", "fluidTemp", "panelTemp", "tankTemp", "ambientTemp"}
    for row, result in zip(rows, results):
        assert row["time"] == result.step
        assert row["tankTemp"] == pytest.approx(
            celsius_to_fahrenheit(result.tank_temp), rel=REL_TOL
        )


def test_results_dataframe_columns_and_irradiance() -> None:
    system = SolarThermalSystem(changes={18: {"cloud_cover": 100.0}})
    df = system.results_dataframe(system.simulate())

    assert list(df.index) == list(range(24))
    for column in ("hour", "irradiance", "ambient_temp", "fluid_temp", "plate_temp",
                   "tank_temp", "tank_energy_MJ"):
        assert column in df.columns

    assert df.loc[12, "irradiance"] == pytest.approx(1000.0, rel=1e-6)
    assert (df.loc[:5, "irradiance"] == 0.0).all()
    assert (df.loc[18:, "irradiance"].abs() < 1e-9).all()


def test_tank_energy_matches_temperature_rise() -> None:
    system = SolarThermalSystem()
    df = system.results_dataframe(system.simulate())
    p = system.params
    expected = (df["tank_temp"].iloc[-1] - p.tank_temp) * p.tank_volume * p.fluid_density * p.fluid_specific_heat / 1e6
    assert df["tank_energy_MJ"].iloc[-1] == pytest.approx(expected, rel=1e-9)


def test_summary_dataframe(capsys) -> None:
    system = SolarThermalSystem(SimulationParameters(panel_efficiency=0.8))
    results = system.simulate()
    summary = system.summary_dataframe(results)

    assert list(summary.columns) == ["Value"]
    assert summary.loc["Steps Simulated", "Value"] == 24
    assert summary.loc["Final Tank Temp (°C)", "Value"] == pytest.approx(results[-1].tank_temp)
    assert summary.loc["Peak Solar Irradiance (W/m²)", "Value"] == pytest.approx(1000.0, rel=1e-6)
    assert "Energy Stored in Tank (MJ)" in capsys.readouterr().out


def test_print_key_metrics(capsys) -> None:
    system = SolarThermalSystem(SimulationParameters(duration=48))
    system.print_key_metrics(system.simulate())
    out = capsys.readouterr().out

    assert "KEY METRICS" in out
    assert "Step    0" in out
    assert "Step   24" in out
    assert "Final Tank Temp" in out


def test_plot_results_returns_figure() -> None:
    system = SolarThermalSystem()
    fig = system.plot_results(system.simulate(), show=False)
    assert len(fig.axes) == 2
    matplotlib.pyplot.close(fig)


def test_reports_handle_empty_results(capsys) -> None:
    system = SolarThermalSystem(start_step=24)
    results = system.simulate()
    assert results == []

    summary = system.summary_dataframe(results)
    assert list(summary.columns) == ["Value"]
    assert summary.empty

    system.print_key_metrics(results)
    assert "No steps simulated." in capsys.readouterr().out


def test_tank_energy_uses_volume_in_force_at_each_step() -> None:
    system = SolarThermalSystem(changes={12: {"tank_volume": 2000.0}})
    df = system.results_dataframe(system.simulate())
    p = system.params

    def energy(step: int, volume: float) -> float:
        return (df.loc[step, "tank_temp"] - p.tank_temp) * volume * p.fluid_density * p.fluid_specific_heat / 1e6

    assert df.loc[11, "tank_energy_MJ"] == pytest.approx(energy(11, 1000.0), rel=1e-9)
    assert df.loc[12, "tank_energy_MJ"] == pytest.approx(energy(12, 2000.0), rel=1e-9)
