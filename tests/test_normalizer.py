"""Record normalizer tests: unit conversion, group presence, stream merging."""

import copy
from dataclasses import replace

import pytest
import yaml

from core.config import DEFAULT_CONFIG_PATH, build_config
from decoder import decode, normalize
from decoder.normalizer import merge_streams
from tests.frames import BASE_RTD, MP_RAW_DEFAULTS, pack_frame


def _field(layout, name):
    return next(f for f in layout.fields if f.name == name)


# =============================================================================
# CONVERSION
# =============================================================================

class TestConversion:

    def test_round_trip_applies_scale_and_offset(self, mp_frame, config):
        """Decoded + normalized values equal raw * scale + offset per field."""
        layout = config.layouts["MP"]
        raw = dict(MP_RAW_DEFAULTS, temperature=151.25, battery_voltage=1287,
                   battery_current=-250, motor_current_avg=1111, actuation_time=375,
                   vibration_max_z=-42, reset_counter=3, hall_pulses=77, flow_on=0)
        frames, _ = decode(mp_frame(**{k: v for k, v in raw.items() if k != "rtd"}))
        (record,) = normalize(frames, "MP", config)

        for name in ("temperature", "battery_voltage", "battery_current",
                     "motor_current_avg", "actuation_time", "vibration_max_z"):
            spec = _field(layout, name)
            assert getattr(record.mp, name) == raw[name] * spec.scale + spec.offset
        assert record.mp.reset_counter == 3
        assert record.mp.hall_pulses == 77
        assert record.mp.flow_on is False
        assert record.rtd == float(BASE_RTD)

    def test_coefficients_come_from_config(self, config):
        with open(DEFAULT_CONFIG_PATH) as f:
            data = yaml.safe_load(f)
        data = copy.deepcopy(data)
        for entry in data["layouts"]["MP"]["fields"]:
            if entry["name"] == "temperature":
                entry["scale"] = 2.0
                entry["offset"] = -32.0
        custom = build_config(data)

        frame = pack_frame(custom.layouts["MP"], dict(MP_RAW_DEFAULTS, temperature=100.0))
        frames, _ = decode(frame, config=custom)
        (record,) = normalize(frames, config=custom)
        assert record.mp.temperature == 100.0 * 2.0 - 32.0

    def test_absent_group_is_none_not_zero(self, mp_frame, mdg_frame):
        mp_frames, _ = decode(mp_frame(battery_current=0))
        mdg_frames, _ = decode(mdg_frame())
        (mp_record,) = normalize(mp_frames)
        (mdg_record,) = normalize(mdg_frames)

        assert mp_record.mdg is None
        assert mp_record.mp.battery_current == 0.0
        assert mp_record.get("mdg.gamma") is None
        assert mdg_record.mp is None
        assert mdg_record.get("mp.temperature") is None
        assert mdg_record.source == "MDG"

    def test_peak_shock_derived(self, mdg_frame):
        frames, _ = decode(mdg_frame(shock_x=15, shock_y=72, shock_z=30))
        (record,) = normalize(frames)
        assert record.mdg.peak_shock == record.mdg.shock_y


# =============================================================================
# ORDERING AND MERGING
# =============================================================================

class TestOrderingAndMerge:

    def test_n_frames_give_n_ordered_records(self, mp_frame):
        buf = b"".join(mp_frame(rtd_offset=i // 2) for i in range(30))
        frames, _ = decode(buf)
        records = normalize(frames)

        assert len(records) == 30
        rtds = [r.rtd for r in records]
        assert rtds == sorted(rtds)
        assert [r.sequence for r in records] == list(range(30))

    def test_out_of_order_clock_is_sorted(self, mp_frame):
        buf = mp_frame(rtd_offset=5) + mp_frame(rtd_offset=1) + mp_frame(rtd_offset=3)
        frames, _ = decode(buf)
        records = normalize(frames)
        assert [r.rtd - BASE_RTD for r in records] == [1, 3, 5]

    def test_mixed_streams_merge_within_tolerance(self, mp_frame, mdg_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(3)) + \
              b"".join(mdg_frame(rtd_offset=i) for i in range(3))
        frames, stats = decode(buf)
        records = normalize(frames, stats.detected_format)

        assert len(records) == 3
        assert all(r.source == "MERGED" for r in records)
        assert [r.mdg_rtd for r in records] == [r.rtd for r in records]

    def test_mixed_streams_outside_tolerance_stay_separate(self, mp_frame, mdg_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(3)) + \
              b"".join(mdg_frame(rtd_offset=100 + i) for i in range(2))
        frames, _ = decode(buf)
        records = normalize(frames)

        assert [r.source for r in records] == ["MP"] * 3 + ["MDG"] * 2
        assert [r.sequence for r in records] == list(range(5))

    def test_each_mdg_sample_used_once(self, mp_frame, mdg_frame):
        buf = mp_frame(rtd_offset=0) + mp_frame(rtd_offset=1) + mdg_frame(rtd_offset=0)
        frames, _ = decode(buf)
        records = normalize(frames)

        assert [r.source for r in records] == ["MERGED", "MP"]

    def test_format_restriction(self, mdg_frame):
        frames, _ = decode(mdg_frame())
        with pytest.raises(ValueError):
            normalize(frames, "MP")

    def test_empty_input(self):
        assert normalize([]) == []


# =============================================================================
# MERGE TOLERANCE EDGES
# =============================================================================

class TestMergeEdges:

    def test_gap_equal_to_tolerance_merges(self, mp_frame, mdg_frame):
        """A sample exactly merge_tolerance_sec away is still a match."""
        frames, _ = decode(mp_frame(rtd_offset=0) + mdg_frame(rtd_offset=1))
        (record,) = normalize(frames)

        assert record.source == "MERGED"
        assert record.rtd == float(BASE_RTD)
        assert record.mdg_rtd == float(BASE_RTD + 1)

    def test_gap_just_past_tolerance_stays_separate(self, mp_frame, mdg_frame, config):
        tight = replace(config, merge_tolerance_sec=0.999)
        frames, _ = decode(mp_frame(rtd_offset=0) + mdg_frame(rtd_offset=1), config=tight)
        records = normalize(frames, config=tight)
        assert [r.source for r in records] == ["MP", "MDG"]

    def test_tie_goes_to_earlier_mdg_sample(self, mp_frame, mdg_frame):
        buf = mp_frame(rtd_offset=1) + mdg_frame(rtd_offset=0) + mdg_frame(rtd_offset=2)
        frames, _ = decode(buf)
        records = normalize(frames)

        assert [r.source for r in records] == ["MERGED", "MDG"]
        assert records[0].mdg_rtd == float(BASE_RTD)
        assert records[1].rtd == float(BASE_RTD + 2)

    def test_merge_streams_inclusive_tie_on_fractional_times(self):
        mp, early, late = object(), object(), object()
        rows = merge_streams([(1.0, mp)], [(0.5, early), (1.5, late)], tolerance=0.5)
        assert rows == [(1.0, mp, early, 0.5), (1.5, None, late, None)]
