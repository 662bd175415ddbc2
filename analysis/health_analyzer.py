"""
HealthAnalyzer -- deterministic diagnostic pass over a normalized record sequence.

Checks, in evaluation order:
  1. Invalid sensor readings (sentinel / non-finite temperature)
  2. Communication errors (controller resets)
  3. Hall pulse faults (motor current without rotation pulses)
  4. Delta spikes (temperature, battery voltage, battery current)
  5. Operating limits (temperature, battery voltage, motor current, pump-off load)
  6. Temperature bands (elevated, low) and IQR outliers
  7. Vibration magnitude pattern and motor degradation trend
  8. Gauge checks (shock, gamma, voltage rail stability, rotation speed)

Every category with at least one occurrence becomes one Issue. Severity is
graded from the occurrence rate against a (warning_rate, critical_rate) pair,
with some categories escalating to CRITICAL on magnitude alone.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.config import Thresholds
from core.constants import (
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_RANK,
    SEVERITY_WARNING,
    STATUS_CRITICAL,
    STATUS_OPERATIONAL,
    STATUS_WARNING,
)
from core.models import RAIL_FIELDS, AnalysisResult, Issue, SensorRecord
from core.utils import is_valid_reading

# (category, MP field, threshold attr, rates attr, label, unit)
DELTA_CHANNELS = (
    ("TEMPERATURE_SPIKES", "temperature", "temp_delta", "temp_spike_rates",
     "Temperature", "°F"),
    ("VOLTAGE_SPIKES", "battery_voltage", "voltage_delta", "voltage_spike_rates",
     "Battery voltage", "V"),
    ("CURRENT_SPIKES", "battery_current", "current_delta", "current_spike_rates",
     "Battery current", "A"),
)


def grade_severity(rate: float, rates, force_critical: bool = False) -> str:
    """Map an occurrence rate onto CRITICAL/WARNING/INFO (strict >)."""
    warning_rate, critical_rate = rates
    if force_critical or rate > critical_rate:
        return SEVERITY_CRITICAL
    if rate > warning_rate:
        return SEVERITY_WARNING
    return SEVERITY_INFO


def _rate(count: int, total: int) -> float:
    return count / total if total else 0.0


def _percent(count: int, total: int) -> Optional[float]:
    return round(100.0 * count / total, 2) if total else None


class HealthAnalyzer:
    """Classifies anomalies in one record sequence into graded Issues."""

    def __init__(self, thresholds: Optional[Thresholds] = None, verbose: bool = False):
        self.thresholds = thresholds or Thresholds()
        self.verbose = verbose
        self.issues: List[Issue] = []
        self.metrics: Dict[str, object] = {}

    def add_issue(self, category: str, severity: str, description: str,
                  explanation: str, times: Sequence[float], details: dict = None):
        """Record one category; categories with no occurrences are dropped."""
        if not times:
            return
        issue = Issue(
            category=category,
            severity=severity,
            description=description,
            explanation=explanation,
            count=len(times),
            first_rtd=min(times),
            last_rtd=max(times),
            details=details or {},
        )
        self.issues.append(issue)
        if self.verbose:
            icon = {SEVERITY_CRITICAL: "!!!", SEVERITY_WARNING: "!!", SEVERITY_INFO: "!"}[severity]
            print(f"    [{icon} {severity}] {category}: {description} (x{issue.count})")

    def analyze(self, records: Sequence[SensorRecord],
                generated_at: Optional[datetime] = None) -> AnalysisResult:
        """Run every check over `records` and assemble the AnalysisResult."""
        self.issues = []
        mp_records = [r for r in records if r.mp is not None]
        mdg_records = [r for r in records if r.mdg is not None]
        self.metrics = {
            "record_count": len(records),
            "mp_record_count": len(mp_records),
            "mdg_record_count": len(mdg_records),
            "merged_record_count": sum(1 for r in records if r.mp is not None and r.mdg is not None),
        }

        self._check_invalid_readings(mp_records)
        self._check_communication_errors(mp_records)
        self._check_hall_pulses(mp_records)
        self._check_deltas(mp_records)
        self._check_operating_limits(mp_records)
        self._check_temperature_bands(mp_records)
        self._check_vibration(mp_records)
        self._check_motor_degradation(mp_records)
        self._check_shock(mdg_records)
        self._check_gamma(mdg_records)
        self._check_rail_voltages(mdg_records)
        self._check_rotation(mdg_records)

        # Stable sort: rule order is kept within a severity
        ordered = tuple(sorted(self.issues, key=lambda i: SEVERITY_RANK[i.severity]))
        n_critical = sum(1 for i in ordered if i.severity == SEVERITY_CRITICAL)
        n_warning = sum(1 for i in ordered if i.severity == SEVERITY_WARNING)
        n_info = sum(1 for i in ordered if i.severity == SEVERITY_INFO)

        if n_critical > 0:
            status = STATUS_CRITICAL
        elif ordered:
            status = STATUS_WARNING
        else:
            status = STATUS_OPERATIONAL

        return AnalysisResult(
            overall_status=status,
            critical_count=n_critical,
            warning_count=n_warning,
            info_count=n_info,
            issues=ordered,
            metrics=self.metrics,
            record_count=len(records),
            generated_at=generated_at or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # MP checks
    # ------------------------------------------------------------------

    def _check_invalid_readings(self, mp_records):
        t = self.thresholds
        times = [r.rtd for r in mp_records
                 if not is_valid_reading(r.mp.temperature, t.sentinel_magnitude)]
        self.metrics["invalid_reading_count"] = len(times)
        rate = _rate(len(times), len(mp_records))
        self.add_issue(
            "INVALID_SENSOR_READING",
            grade_severity(rate, t.invalid_reading_rates),
            "Invalid temperature readings",
            "Temperature values beyond the physical range indicate a sensor or ADC "
            "fault. They are excluded from every statistic.",
            times,
            {"field": "temperature",
             "invalid_percent": _percent(len(times), len(mp_records)),
             "sentinel_magnitude": t.sentinel_magnitude},
        )

    def _check_communication_errors(self, mp_records):
        t = self.thresholds
        times = [r.rtd for r in mp_records if r.mp.reset_counter > 0]
        rate_percent = _percent(len(times), len(mp_records))
        self.metrics["comm_error_count"] = len(times)
        self.metrics["comm_error_rate_percent"] = rate_percent
        self.add_issue(
            "COMMUNICATION_ERRORS",
            grade_severity(_rate(len(times), len(mp_records)), t.comm_error_rates),
            "Controller communication errors",
            "The reset counter incremented, meaning the controller restarted or lost "
            "its link. Frequent resets point to power or wiring problems.",
            times,
            {"error_rate_percent": rate_percent,
             "mp_record_count": len(mp_records),
             "critical_rate_percent": round(100.0 * t.comm_error_rates[1], 2)},
        )

    def _check_hall_pulses(self, mp_records):
        t = self.thresholds
        times = [r.rtd for r in mp_records
                 if r.mp.hall_pulses == 0 and r.mp.motor_current_avg > 0]
        hall_active = sum(1 for r in mp_records if r.mp.hall_pulses > 0)
        total_pulses = sum(r.mp.hall_pulses for r in mp_records)
        self.metrics.update({
            "pulse_error_count": len(times),
            "hall_active_count": hall_active,
            "hall_active_percent": _percent(hall_active, len(mp_records)),
            "total_hall_pulses": total_pulses,
        })
        self.add_issue(
            "HALL_PULSE_FAULT",
            grade_severity(_rate(len(times), len(mp_records)), t.pulse_error_rates),
            "Motor current without hall pulses",
            "The motor drew current but the hall sensor reported no rotation, which "
            "suggests a failed hall sensor or a stalled motor.",
            times,
            {"pulse_error_percent": _percent(len(times), len(mp_records))},
        )

    def _check_deltas(self, mp_records):
        t = self.thresholds
        delta_stats = {}
        for category, fname, thr_attr, rates_attr, label, unit in DELTA_CHANNELS:
            threshold = getattr(t, thr_attr)
            series = [(r.rtd, getattr(r.mp, fname)) for r in mp_records
                      if is_valid_reading(getattr(r.mp, fname), t.sentinel_magnitude)]
            deltas = []
            spike_times = []
            for (_, prev), (rtd, cur) in zip(series, series[1:]):
                delta = round(abs(cur - prev), t.delta_precision)
                deltas.append(delta)
                if delta > threshold:
                    spike_times.append(rtd)

            max_delta = max(deltas) if deltas else None
            avg_delta = round(math.fsum(deltas) / len(deltas), 6) if deltas else None
            delta_stats[fname] = {
                "threshold": threshold,
                "pairs": len(deltas),
                "spikes": len(spike_times),
                "avg_delta": avg_delta,
                "max_delta": max_delta,
            }
            if not spike_times:
                continue
            severity = grade_severity(
                _rate(len(spike_times), len(deltas)), getattr(t, rates_attr),
                force_critical=max_delta > threshold * t.spike_magnitude_critical)
            self.add_issue(
                category, severity,
                f"{label} spikes",
                f"{label} changed by more than {threshold} {unit} between consecutive "
                f"samples, up to {max_delta} {unit}.",
                spike_times,
                {"threshold": threshold, "max_delta": max_delta, "avg_delta": avg_delta,
                 "spike_percent": _percent(len(spike_times), len(deltas))},
            )
        self.metrics["delta_stats"] = delta_stats

    def _check_operating_limits(self, mp_records):
        t = self.thresholds
        total = len(mp_records)

        hot = [(r.rtd, r.mp.temperature) for r in mp_records
               if is_valid_reading(r.mp.temperature, t.sentinel_magnitude)
               and r.mp.temperature > t.high_temperature_f]
        self.add_issue(
            "HIGH_TEMPERATURE",
            grade_severity(_rate(len(hot), total), t.high_temperature_rates),
            "Controller over temperature",
            f"Temperature exceeded {t.high_temperature_f} °F, risking electronics "
            "damage and reduced battery life.",
            [rtd for rtd, _ in hot],
            {"limit": t.high_temperature_f,
             "max_temperature": max((v for _, v in hot), default=None)},
        )

        low = [(r.rtd, r.mp.battery_voltage) for r in mp_records
               if is_valid_reading(r.mp.battery_voltage)
               and r.mp.battery_voltage < t.low_battery_voltage]
        self.add_issue(
            "LOW_BATTERY_VOLTAGE",
            grade_severity(_rate(len(low), total), t.low_battery_rates),
            "Low battery voltage",
            f"Battery voltage fell below {t.low_battery_voltage} V, which can cause "
            "resets and erratic sensor readings.",
            [rtd for rtd, _ in low],
            {"limit": t.low_battery_voltage,
             "min_voltage": min((v for _, v in low), default=None)},
        )

        high = [(r.rtd, r.mp.battery_voltage) for r in mp_records
                if is_valid_reading(r.mp.battery_voltage)
                and r.mp.battery_voltage > t.high_battery_voltage]
        self.add_issue(
            "HIGH_BATTERY_VOLTAGE",
            grade_severity(_rate(len(high), total), t.high_battery_rates),
            "High battery voltage",
            f"Battery voltage exceeded {t.high_battery_voltage} V; check the charging "
            "system and regulators.",
            [rtd for rtd, _ in high],
            {"limit": t.high_battery_voltage,
             "max_voltage": max((v for _, v in high), default=None)},
        )

        overcurrent = [(r.rtd, r.mp.motor_current_max) for r in mp_records
                       if r.mp.motor_current_max > t.motor_overcurrent_amps]
        self.add_issue(
            "MOTOR_OVERCURRENT",
            grade_severity(_rate(len(overcurrent), total), t.motor_overcurrent_rates),
            "Motor current spikes",
            f"Peak motor current exceeded {t.motor_overcurrent_amps} A, a sign of "
            "mechanical binding or excessive load.",
            [rtd for rtd, _ in overcurrent],
            {"limit": t.motor_overcurrent_amps,
             "max_current": max((v for _, v in overcurrent), default=None)},
        )

        loaded_off = [r.rtd for r in mp_records
                      if not r.mp.flow_on and r.mp.motor_current_avg > t.pump_off_motor_amps]
        self.add_issue(
            "PUMP_OFF_MOTOR_LOAD",
            grade_severity(_rate(len(loaded_off), total), t.pump_off_load_rates),
            "Motor load while pump reported off",
            f"Average motor current stayed above {t.pump_off_motor_amps} A while flow "
            "was off, which suggests a stuck valve or a flow sensor fault.",
            loaded_off,
            {"limit": t.pump_off_motor_amps},
        )

    def _check_temperature_bands(self, mp_records):
        t = self.thresholds
        temps = [(r.rtd, r.mp.temperature) for r in mp_records
                 if is_valid_reading(r.mp.temperature, t.sentinel_magnitude)]
        if not temps:
            return
        total = len(temps)

        elevated = [(rtd, v) for rtd, v in temps
                    if t.elevated_temperature_f < v <= t.high_temperature_f]
        if len(elevated) > total * t.elevated_temperature_fraction:
            avg = math.fsum(v for _, v in elevated) / len(elevated)
            self.add_issue(
                "ELEVATED_TEMPERATURE", SEVERITY_WARNING,
                "Elevated operating temperature",
                f"{_percent(len(elevated), total)}% of readings sat between "
                f"{t.elevated_temperature_f} and {t.high_temperature_f} °F. Sustained "
                "thermal stress; check cooling and circulation.",
                [rtd for rtd, _ in elevated],
                {"band_f": [t.elevated_temperature_f, t.high_temperature_f],
                 "avg_temperature": round(avg, 3),
                 "band_percent": _percent(len(elevated), total)},
            )

        low = [(rtd, v) for rtd, v in temps if v < t.low_temperature_f]
        if len(low) > total * t.low_temperature_fraction:
            self.add_issue(
                "LOW_TEMPERATURE", SEVERITY_INFO,
                "Low temperature operation",
                f"Readings below {t.low_temperature_f} °F suggest a cold environment "
                "that raises fluid viscosity and motor load.",
                [rtd for rtd, _ in low],
                {"limit": t.low_temperature_f,
                 "min_temperature": min(v for _, v in low),
                 "low_percent": _percent(len(low), total)},
            )

        if total <= t.temperature_iqr_min_samples:
            return
        ordered = np.sort(np.array([v for _, v in temps], dtype=float))
        q1 = float(ordered[int(total * 0.25)])
        q3 = float(ordered[int(total * 0.75)])
        spread = t.temperature_iqr_factor * (q3 - q1)
        lower, upper = q1 - spread, q3 + spread
        self.add_issue(
            "TEMPERATURE_OUTLIERS", SEVERITY_INFO,
            "Statistical temperature outliers",
            "Readings fell outside the interquartile fence of the run, an unusual "
            "thermal pattern worth a look alongside the other issues.",
            [rtd for rtd, v in temps if v < lower or v > upper],
            {"q1": q1, "q3": q3, "lower_bound": round(lower, 6),
             "upper_bound": round(upper, 6)},
        )

    def _check_vibration(self, mp_records):
        """Flag readings whose vibration magnitude exceeds a multiple of the run mean."""
        t = self.thresholds
        samples = [r for r in mp_records
                   if all(is_valid_reading(v) for v in
                          (r.mp.vibration_max_x, r.mp.vibration_max_y, r.mp.vibration_max_z))]
        if len(samples) <= t.vibration_min_samples:
            return
        xyz = np.array([[r.mp.vibration_max_x, r.mp.vibration_max_y, r.mp.vibration_max_z]
                        for r in samples], dtype=float)
        magnitudes = np.sqrt((xyz ** 2).sum(axis=1))
        mean = float(magnitudes.mean())
        limit = mean * t.vibration_factor
        times = [r.rtd for r, m in zip(samples, magnitudes) if m > limit]
        if len(times) <= len(samples) * t.vibration_fraction:
            return
        self.add_issue(
            "EXCESSIVE_VIBRATION", SEVERITY_WARNING,
            "Excessive vibration",
            "Vibration magnitude repeatedly exceeded the run average, which points to "
            "mechanical wear or imbalance.",
            times,
            {"mean_magnitude": round(mean, 6), "limit": round(limit, 6),
             "max_magnitude": round(float(magnitudes.max()), 6),
             "event_percent": _percent(len(times), len(samples))},
        )

    def _check_motor_degradation(self, mp_records):
        """Compare 1 / (current x actuation time) over the first and last quarter."""
        t = self.thresholds
        samples = [(r.rtd, 1.0 / (r.mp.motor_current_avg * r.mp.actuation_time))
                   for r in mp_records
                   if r.mp.motor_current_avg > 0 and r.mp.actuation_time > 0]
        if len(samples) <= t.motor_degradation_min_samples:
            return
        quarter = len(samples) // 4
        first, last = samples[:quarter], samples[-quarter:]
        first_eff = math.fsum(e for _, e in first) / quarter
        last_eff = math.fsum(e for _, e in last) / quarter
        degradation = round((first_eff - last_eff) / first_eff * 100.0, 3)
        self.metrics["motor_degradation_percent"] = degradation
        if degradation <= t.motor_degradation_warning_percent:
            return
        severity = SEVERITY_CRITICAL if degradation > t.motor_degradation_critical_percent \
            else SEVERITY_WARNING
        self.add_issue(
            "MOTOR_DEGRADATION", severity,
            "Motor performance degradation",
            f"Motor efficiency fell {degradation}% between the first and last quarter "
            "of the run. Consider scheduling maintenance.",
            [last[0][0]],
            {"degradation_percent": degradation,
             "window_start_rtd": last[0][0], "window_end_rtd": last[-1][0]},
        )

    # ------------------------------------------------------------------
    # MDG checks
    # ------------------------------------------------------------------

    def _check_shock(self, mdg_records):
        t = self.thresholds
        shocks = [(r.rtd, r.mdg.peak_shock) for r in mdg_records
                  if r.mdg.peak_shock > t.high_shock_g]
        peak = max((v for _, v in shocks), default=None)
        self.metrics["high_shock_count"] = len(shocks)
        self.add_issue(
            "HIGH_SHOCK",
            grade_severity(_rate(len(shocks), len(mdg_records)), t.high_shock_rates,
                           force_critical=peak is not None and peak > t.severe_shock_g),
            "High shock events",
            f"Peak shock exceeded {t.high_shock_g} g. Sustained shock accelerates "
            "wear on downhole electronics.",
            [rtd for rtd, _ in shocks],
            {"limit_g": t.high_shock_g, "severe_limit_g": t.severe_shock_g,
             "max_shock_g": peak},
        )

    def _check_gamma(self, mdg_records):
        t = self.thresholds
        times = [r.rtd for r in mdg_records
                 if is_valid_reading(r.mdg.gamma)
                 and not (t.gamma_low_cps <= r.mdg.gamma <= t.gamma_high_cps)]
        self.add_issue(
            "GAMMA_OUT_OF_RANGE",
            grade_severity(_rate(len(times), len(mdg_records)), t.gamma_rates),
            "Gamma count rate out of range",
            f"Gamma readings outside {t.gamma_low_cps}-{t.gamma_high_cps} cps may "
            "reflect a formation change or a detector fault.",
            times,
            {"low_cps": t.gamma_low_cps, "high_cps": t.gamma_high_cps},
        )

    def _check_rail_voltages(self, mdg_records):
        """Rails whose coefficient of variation exceeds the limit are unstable."""
        t = self.thresholds
        rail_stats = {}
        unstable = []
        times = []
        worst_cv = 0.0
        for rail in RAIL_FIELDS:
            samples = [(r.rtd, getattr(r.mdg, rail)) for r in mdg_records
                       if is_valid_reading(getattr(r.mdg, rail))]
            if len(samples) < t.rail_min_samples:
                continue
            values = np.array([v for _, v in samples], dtype=float)
            mean = float(np.mean(values))
            if mean == 0.0:
                continue
            cv = float(np.std(values)) / abs(mean)
            rail_stats[rail] = {"mean": round(mean, 6), "cv_percent": round(cv * 100.0, 3)}
            if cv <= t.rail_cv_warning:
                continue
            unstable.append(rail)
            worst_cv = max(worst_cv, cv)
            band = t.rail_deviation_fraction * abs(mean)
            times.extend(rtd for rtd, v in samples if abs(v - mean) > band)

        self.metrics["rail_stats"] = rail_stats
        if not unstable:
            return
        severity = SEVERITY_CRITICAL if worst_cv > t.rail_cv_critical else SEVERITY_WARNING
        self.add_issue(
            "RAIL_VOLTAGE_INSTABILITY",
            severity,
            "Unstable system voltage rails",
            "Rail voltages varied more than expected, which points to power supply "
            "instability or a failing regulator.",
            sorted(times),
            {"rails": unstable, "max_cv_percent": round(worst_cv * 100.0, 3)},
        )

    def _check_rotation(self, mdg_records):
        t = self.thresholds
        samples = [r for r in mdg_records
                   if all(is_valid_reading(v) for v in
                          (r.mdg.rpm_min, r.mdg.rpm_avg, r.mdg.rpm_max))
                   and (r.mdg.rpm_min > 0 or r.mdg.rpm_avg > 0 or r.mdg.rpm_max > 0)]
        if not samples:
            return
        total = len(samples)

        high = [r for r in samples if r.mdg.rpm_max > t.high_rpm]
        if high:
            peak = max(r.mdg.rpm_max for r in high)
            rate = len(high) / total
            self.add_issue(
                "HIGH_ROTATION_SPEED",
                SEVERITY_CRITICAL if peak > t.severe_rpm or rate > t.high_rpm_critical_fraction
                else SEVERITY_WARNING,
                "High rotation speed",
                f"Rotation exceeded {t.high_rpm} RPM, risking bearing damage and "
                "cavitation.",
                [r.rtd for r in high],
                {"limit": t.high_rpm, "peak_rpm": peak, "high_percent": _percent(len(high), total)},
            )

        low = [r for r in samples if 0 < r.mdg.rpm_max < t.low_rpm]
        if len(low) > total * t.low_rpm_fraction:
            self.add_issue(
                "LOW_ROTATION_SPEED", SEVERITY_WARNING,
                "Low rotation speed operation",
                f"Rotation stayed below {t.low_rpm} RPM, which suggests motor trouble, "
                "high viscosity or a blockage.",
                [r.rtd for r in low],
                {"limit": t.low_rpm, "low_percent": _percent(len(low), total)},
            )

        spreads = [(r.rtd, abs(r.mdg.rpm_max - r.mdg.rpm_min)) for r in samples]
        spreads = [(rtd, s) for rtd, s in spreads if s > 0]
        if not spreads:
            return
        avg_spread = math.fsum(s for _, s in spreads) / len(spreads)
        max_spread = max(s for _, s in spreads)
        if avg_spread <= t.rpm_spread_avg and max_spread <= t.rpm_spread_max:
            return
        if max_spread > t.rpm_spread_critical:
            severity = SEVERITY_CRITICAL
        elif avg_spread > t.rpm_spread_avg_warning:
            severity = SEVERITY_WARNING
        else:
            severity = SEVERITY_INFO
        self.add_issue(
            "RPM_INSTABILITY", severity,
            "Rotation speed instability",
            "The spread between minimum and maximum RPM within a sample was large, "
            "a sign of mechanical wear or unstable load.",
            [rtd for rtd, _ in spreads],
            {"avg_spread_rpm": round(avg_spread, 3), "max_spread_rpm": max_spread},
        )


def analyze(records: Sequence[SensorRecord], thresholds: Optional[Thresholds] = None,
            generated_at: Optional[datetime] = None, verbose: bool = False) -> AnalysisResult:
    """Pure entry point: a fresh HealthAnalyzer per call."""
    return HealthAnalyzer(thresholds, verbose=verbose).analyze(records, generated_at=generated_at)
