"""Battery simulator: stateful core advancing one battery tick by tick."""

import math
from typing import Optional

from bms_telemetry.errors import InvalidConfiguration
from bms_telemetry.models import BatteryState, PowerMode, SimulationResult
from .base import BaseSimulator

_SOC_EPSILON = 1e-9


class BatterySimulator(BaseSimulator):
    """
    Simulates one site battery with bounded, realistic behavior.

    Models:
    - State of Charge (SoC) with charge/discharge efficiency losses
    - C-rate power limits, headroom to max SoC and a reserve floor
    - Grid import/export needed to balance solar and load
    - Voltage curve anchored at the nominal voltage
    - Temperature relaxing toward ambient plus self-heating
    - Slow health degradation under cycle, temperature and SoC stress

    The simulator exclusively owns its ``BatteryState``; callers get copies.
    """

    def __init__(
        self,
        capacity_kwh: float = 50.0,
        nominal_voltage: float = 500.0,
        interval_minutes: float = 5.0,
        *,
        reserve_soc: float = 0.15,
        max_soc: float = 1.0,
        max_charge_rate_c: float = 0.5,
        max_discharge_rate_c: float = 1.0,
        charging_efficiency: float = 0.95,
        discharging_efficiency: float = 0.95,
        self_discharge_per_minute: float = 0.00001,
        self_heating_c_per_amp: float = 0.1,
        thermal_time_constant_minutes: float = 180.0,
        optimal_temperature_c: float = 25.0,
        min_health_pct: float = 70.0,
        initial_soc: float = 0.5,
        initial_state: Optional[BatteryState] = None,
    ):
        """
        Initialize battery simulator.

        Args:
            capacity_kwh: Usable capacity in kWh
            nominal_voltage: Nominal pack voltage in volts
            interval_minutes: Default tick length in minutes
            reserve_soc: Floor below which the battery stops discharging (0-1)
            max_soc: Ceiling the battery charges up to (0-1)
            max_charge_rate_c: Charge power limit as a C-rate
            max_discharge_rate_c: Discharge power limit as a C-rate
            charging_efficiency: Fraction of charge power stored (0-1]
            discharging_efficiency: Fraction of drawn energy delivered (0-1]
            self_discharge_per_minute: SoC-proportional self-discharge rate
            self_heating_c_per_amp: Steady-state temperature rise per amp
            thermal_time_constant_minutes: Time to close ~63% of the gap to target
            optimal_temperature_c: Temperature with the least wear
            min_health_pct: Health never degrades below this value
            initial_soc: Starting SoC when no initial_state is given
            initial_state: Full starting state (e.g. restored from a reading)

        Raises:
            InvalidConfiguration: If any parameter is outside its valid range
        """
        super().__init__()
        if capacity_kwh <= 0:
            raise InvalidConfiguration("capacity_kwh must be positive")
        if interval_minutes <= 0:
            raise InvalidConfiguration("interval_minutes must be positive")
        if nominal_voltage <= 0:
            raise InvalidConfiguration("nominal_voltage must be positive")
        if not 0 <= reserve_soc < max_soc <= 1:
            raise InvalidConfiguration(
                "SoC bounds must satisfy 0 <= reserve_soc < max_soc <= 1"
            )
        if max_charge_rate_c <= 0 or max_discharge_rate_c <= 0:
            raise InvalidConfiguration(
                "max_charge_rate_c and max_discharge_rate_c must be positive"
            )
        for name, value in (
            ("charging_efficiency", charging_efficiency),
            ("discharging_efficiency", discharging_efficiency),
        ):
            if not 0 < value <= 1:
                raise InvalidConfiguration(f"{name} must be in the range (0, 1]")
        if thermal_time_constant_minutes <= 0:
            raise InvalidConfiguration("thermal_time_constant_minutes must be positive")

        self.capacity_kwh = capacity_kwh
        self.nominal_voltage = nominal_voltage
        self.interval_minutes = interval_minutes
        self.reserve_soc = reserve_soc
        self.max_soc = max_soc
        self.max_charge_rate_c = max_charge_rate_c
        self.max_discharge_rate_c = max_discharge_rate_c
        self.charging_efficiency = charging_efficiency
        self.discharging_efficiency = discharging_efficiency
        self.self_discharge_per_minute = self_discharge_per_minute
        self.self_heating_c_per_amp = self_heating_c_per_amp
        self.thermal_time_constant_minutes = thermal_time_constant_minutes
        self.optimal_temperature_c = optimal_temperature_c
        self.min_health_pct = min_health_pct

        if initial_state is None:
            initial_state = BatteryState(
                soc_fraction=initial_soc,
                voltage_v=nominal_voltage,
                current_a=0.0,
                temperature_c=25.0,
                health_pct=98.0,
            )
        self._state = BatteryState(soc_fraction=0.0, voltage_v=0.0, current_a=0.0,
                                   temperature_c=25.0, health_pct=100.0)
        self.restore(initial_state)

    @property
    def state(self) -> BatteryState:
        """Copy of the current battery state."""
        return self._state.copy()

    def restore(self, state: BatteryState) -> None:
        """
        Replace the current state, e.g. from the last persisted reading.

        SoC and health are clamped into range; voltage is recomputed from SoC
        so the voltage curve stays authoritative.
        """
        restored = state.copy()
        restored.soc_fraction = self._clamp(restored.soc_fraction, 0.0, 1.0)
        restored.health_pct = self._clamp(restored.health_pct, 0.0, 100.0)
        restored.voltage_v = self.voltage_for_soc(restored.soc_fraction)
        self._state = restored

    def voltage_for_soc(self, soc: float) -> float:
        """
        Battery voltage from SoC using a square-root curve.

        Monotonic in SoC and bounded to 96%-104% of nominal voltage,
        approximating a Li-ion open-circuit voltage curve.
        """
        min_voltage = self.nominal_voltage * 0.96
        max_voltage = self.nominal_voltage * 1.04
        return min_voltage + (max_voltage - min_voltage) * math.sqrt(self._clamp(soc, 0.0, 1.0))

    def classify(self, net_power_kw: float) -> PowerMode:
        """Derive the power-balance mode for a net power at the current SoC."""
        if net_power_kw >= 0:
            return PowerMode.CHARGING
        if self._state.soc_fraction > self.reserve_soc + _SOC_EPSILON:
            return PowerMode.DISCHARGING
        return PowerMode.GRID_ASSISTED

    def _charge_power_limit(self, duration_hours: float) -> float:
        """Charge power allowed by C-rate and headroom to max SoC."""
        rate_limit = self.capacity_kwh * self.max_charge_rate_c
        headroom_kwh = (self.max_soc - self._state.soc_fraction) * self.capacity_kwh
        headroom_limit = headroom_kwh / (self.charging_efficiency * duration_hours)
        return max(0.0, min(rate_limit, headroom_limit))

    def _discharge_power_limit(self, duration_hours: float) -> float:
        """Discharge power allowed by C-rate and energy above the reserve floor."""
        rate_limit = self.capacity_kwh * self.max_discharge_rate_c
        available_kwh = (self._state.soc_fraction - self.reserve_soc) * self.capacity_kwh
        available_limit = available_kwh * self.discharging_efficiency / duration_hours
        return max(0.0, min(rate_limit, available_limit))

    def simulate(
        self,
        solar_kw: float,
        load_kw: float,
        ambient_temperature_c: float,
        grid_available: bool = True,
        duration_minutes: Optional[float] = None,
    ) -> SimulationResult:
        """
        Advance the battery by one tick and balance the site bus.

        Energy flow: solar + grid import = load + battery change + grid export

        Args:
            solar_kw: Solar power available in kW
            load_kw: Load demand in kW
            ambient_temperature_c: Ambient temperature in C
            grid_available: Whether the grid can absorb export / supply import
            duration_minutes: Tick length (defaults to interval_minutes)

        Returns:
            SimulationResult with the updated state and grid flows

        Raises:
            InvalidConfiguration: If duration_minutes is not positive
        """
        duration = self.interval_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise InvalidConfiguration("duration_minutes must be positive")
        duration_hours = duration / 60

        solar_kw = max(0.0, solar_kw)
        load_kw = max(0.0, load_kw)
        net_power_kw = solar_kw - load_kw
        mode = self.classify(net_power_kw)

        grid_import_kw = 0.0
        grid_export_kw = 0.0
        unmet_load_kw = 0.0
        curtailed_kw = 0.0

        if net_power_kw >= 0:
            # Surplus: charge first, then export (or curtail off-grid)
            battery_power_kw = min(net_power_kw, self._charge_power_limit(duration_hours))
            excess_kw = net_power_kw - battery_power_kw
            if grid_available:
                grid_export_kw = excess_kw
            else:
                curtailed_kw = excess_kw
        else:
            # Deficit: discharge down to the reserve floor, then import
            deficit_kw = -net_power_kw
            discharge_kw = min(deficit_kw, self._discharge_power_limit(duration_hours))
            battery_power_kw = -discharge_kw
            remaining_kw = deficit_kw - discharge_kw
            if grid_available:
                grid_import_kw = remaining_kw
            else:
                unmet_load_kw = remaining_kw

        self._update_state(battery_power_kw, duration, ambient_temperature_c)

        return SimulationResult(
            state=self.state,
            mode=mode,
            battery_power_kw=battery_power_kw,
            grid_import_kw=grid_import_kw,
            grid_export_kw=grid_export_kw,
            unmet_load_kw=unmet_load_kw,
            curtailed_kw=curtailed_kw,
        )

    def _update_state(
        self,
        battery_power_kw: float,
        duration_minutes: float,
        ambient_temperature_c: float,
    ) -> None:
        """
        Apply a tick's battery power to SoC, voltage, current, temperature
        and health.

        Args:
            battery_power_kw: Bus power into the battery (negative = discharging)
            duration_minutes: Tick length in minutes
            ambient_temperature_c: Ambient temperature in C
        """
        state = self._state
        previous_soc = state.soc_fraction
        duration_hours = duration_minutes / 60

        if battery_power_kw >= 0:
            stored_kwh = battery_power_kw * duration_hours * self.charging_efficiency
        else:
            stored_kwh = battery_power_kw * duration_hours / self.discharging_efficiency

        soc = previous_soc + stored_kwh / self.capacity_kwh
        if stored_kwh < 0:
            # Discharge never crosses the reserve floor it started above
            soc = max(soc, min(previous_soc, self.reserve_soc))

        if soc > self.reserve_soc:
            self_discharge = soc * self.self_discharge_per_minute * duration_minutes
            soc = max(self.reserve_soc, soc - self_discharge)

        state.soc_fraction = self._clamp(soc, 0.0, 1.0)
        state.voltage_v = self.voltage_for_soc(state.soc_fraction)
        state.current_a = battery_power_kw * 1000 / state.voltage_v
        state.cycle_count += abs(stored_kwh) / self.capacity_kwh

        self._update_temperature(ambient_temperature_c, duration_minutes)
        self._update_health(battery_power_kw, duration_minutes)

    def _update_temperature(self, ambient_temperature_c: float, duration_minutes: float) -> None:
        """
        Relax temperature toward ambient plus self-heating from current.

        Bounded to -10C..60C.
        """
        state = self._state
        target = ambient_temperature_c + self.self_heating_c_per_amp * abs(state.current_a)
        alpha = 1 - math.exp(-duration_minutes / self.thermal_time_constant_minutes)
        temperature = state.temperature_c + (target - state.temperature_c) * alpha
        state.temperature_c = self._clamp(temperature, -10.0, 60.0)

    def _update_health(self, battery_power_kw: float, duration_minutes: float) -> None:
        """
        Degrade health very slowly (~2% per year under normal use).

        Never increases; never drops below min_health_pct unless it was
        already restored below it.
        """
        state = self._state
        cycle_stress = abs(battery_power_kw) / self.capacity_kwh
        temp_stress = abs(state.temperature_c - self.optimal_temperature_c) / 20
        soc_stress = 0.5 if state.soc_fraction < 0.3 or state.soc_fraction > 0.9 else 0.1

        degradation_rate = 0.00001 * (1 + cycle_stress + temp_stress + soc_stress)
        health = state.health_pct - degradation_rate * duration_minutes
        if health < self.min_health_pct:
            health = min(state.health_pct, self.min_health_pct)
        state.health_pct = health
