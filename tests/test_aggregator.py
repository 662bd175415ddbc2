"""Aggregator tests: pump statistics, histograms, shock counts, ordering."""

import random

import pytest

from analysis.aggregator import aggregate, histogram
from core.models import SensorRecord


# =============================================================================
# PUMP STATISTICS
# =============================================================================

class TestPumpStatistics:

    def test_no_pump_on_records(self, mp_records):
        stats = aggregate(mp_records([{"flow_on": False}] * 5))

        assert stats.pump.total_records == 5
        assert stats.pump.runtime_records == 0
        assert stats.pump.efficiency_percent == 0.0
        assert stats.pump.avg_motor_current is None
        assert stats.pump.avg_actuation_time is None
        assert stats.pump.max_temperature is None

    def test_efficiency_and_means(self, mp_records):
        records = mp_records([
            {"flow_on": True, "motor_current_avg": 1.0, "actuation_time": 2.0},
            {"flow_on": True, "motor_current_avg": 2.0, "actuation_time": 4.0},
            {"flow_on": False, "motor_current_avg": 9.0},
            {"flow_on": False},
        ])
        pump = aggregate(records).pump

        assert pump.efficiency_percent == 50.0
        assert pump.avg_motor_current == 1.5
        assert pump.avg_actuation_time == 3.0

    def test_max_temperature_skips_sentinel(self, mp_records):
        records = mp_records([{"temperature": 150.0}, {"temperature": 1e12},
                              {"temperature": 175.5}])
        stats = aggregate(records)

        assert stats.pump.max_temperature == 175.5
        assert stats.device_summary["mp_max_temperature_f"] == 175.5

    def test_empty_input(self):
        stats = aggregate([])
        assert stats.record_count == 0
        assert stats.pump.efficiency_percent is None
        assert stats.high_shock_count == 0


# =============================================================================
# HISTOGRAMS
# =============================================================================

class TestHistogram:

    def test_bins_sorted_by_start(self):
        bins = histogram([27.0, 3.0, 12.0, 15.0, -1.0], 10.0)
        assert bins == [(-10.0, 0.0, 1), (0.0, 10.0, 1), (10.0, 20.0, 2), (20.0, 30.0, 1)]

    def test_total_count_preserved(self):
        rng = random.Random(7)
        values = [rng.uniform(100, 220) for _ in range(300)]
        assert sum(c for _, _, c in histogram(values, 10.0)) == 300

    @pytest.mark.parametrize("width", [0, -2.5])
    def test_non_positive_width_rejected(self, width):
        with pytest.raises(ValueError):
            histogram([1.0, 2.0], width)

    def test_temperature_histogram_in_stats(self, mp_records):
        records = mp_records([{"temperature": t} for t in (151.0, 158.0, 162.0, 1e12)])
        bins = aggregate(records).histograms["mp.temperature"]
        assert bins == ((150.0, 160.0, 2), (160.0, 170.0, 1))


# =============================================================================
# SHOCK AND DEVICE SUMMARY
# =============================================================================

class TestShockAndSummary:

    def test_high_shock_count_uses_threshold(self, mdg_reading):
        records = [SensorRecord(sequence=i, rtd=float(i), mdg=mdg_reading(shock_x=g))
                   for i, g in enumerate((2.0, 6.0, 6.5, 30.0))]
        stats = aggregate(records)

        assert stats.high_shock_count == 2
        assert stats.high_shock_threshold == 6.0
        assert stats.device_summary["mdg_max_shock_g"] == 30.0

    def test_device_summary_interval_and_runtime(self, mp_records):
        records = mp_records([{"flow_on": i < 60} for i in range(120)])
        summary = aggregate(records).device_summary

        assert summary["sample_interval_sec"] == 1.0
        assert summary["pump_on_minutes"] == 1.0
        assert summary["hall_active_percent"] == 100.0

    def test_field_ranges_skip_absent_groups(self, mp_records):
        ranges = aggregate(mp_records([{"battery_voltage": v} for v in (12.0, 13.0, 14.0)])) \
            .field_ranges

        assert ranges["mp.battery_voltage"]["min"] == 12.0
        assert ranges["mp.battery_voltage"]["max"] == 14.0
        assert ranges["mp.battery_voltage"]["count"] == 3
        assert not any(k.startswith("mdg.") for k in ranges)

    def test_order_independent(self, mp_records, mdg_reading):
        records = mp_records([{"temperature": 140.0 + i * 1.7, "flow_on": i % 3 != 0,
                               "motor_current_avg": 0.5 + i * 0.013}
                              for i in range(40)])
        records += [SensorRecord(sequence=100 + i, rtd=float(records[0].rtd + i),
                                 mdg=mdg_reading(shock_y=1.5 * i)) for i in range(10)]
        shuffled = list(records)
        random.Random(42).shuffle(shuffled)

        assert aggregate(records).to_dict() == aggregate(shuffled).to_dict()
