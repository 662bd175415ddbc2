"""Shared fixtures: synthetic MP/MDG frames and ready-made sensor records."""

from typing import Callable

import pytest

from core.config import default_config
from core.models import MDGReading, MPReading, SensorRecord
from tests.frames import BASE_RTD, MDG_RAW_DEFAULTS, MP_RAW_DEFAULTS, pack_frame


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def mp_frame(config) -> Callable[..., bytes]:
    """Factory: mp_frame(rtd_offset=0, **raw_overrides) -> frame bytes."""
    def _build(rtd_offset: int = 0, **overrides) -> bytes:
        values = dict(MP_RAW_DEFAULTS, **overrides)
        values["rtd"] = BASE_RTD + rtd_offset
        return pack_frame(config.layouts["MP"], values)
    return _build


@pytest.fixture
def mdg_frame(config) -> Callable[..., bytes]:
    """Factory: mdg_frame(rtd_offset=0, **raw_overrides) -> frame bytes."""
    def _build(rtd_offset: int = 0, **overrides) -> bytes:
        values = dict(MDG_RAW_DEFAULTS, **overrides)
        values["rtd"] = BASE_RTD + rtd_offset
        return pack_frame(config.layouts["MDG"], values)
    return _build


@pytest.fixture
def mp_reading() -> Callable[..., MPReading]:
    """Factory for a healthy MP reading in physical units."""
    def _build(**overrides) -> MPReading:
        values = dict(
            temperature=150.0, reset_counter=0, battery_current=0.5,
            battery_voltage=13.5, flow_on=True,
            vibration_max_x=0.5, vibration_max_y=0.6, vibration_max_z=0.7,
            vibration_threshold=1.5, motor_current_min=0.8,
            motor_current_avg=1.0, motor_current_max=1.5,
            hall_pulses=120, actuation_time=2.5,
        )
        values.update(overrides)
        return MPReading(**values)
    return _build


@pytest.fixture
def mdg_reading() -> Callable[..., MDGReading]:
    """Factory for a healthy MDG reading in physical units."""
    def _build(**overrides) -> MDGReading:
        values = dict(
            accel_x=0.01, accel_y=-0.02, accel_z=1.0,
            shock_x=2.0, shock_y=2.5, shock_z=3.0,
            shock_count_axial_50g=1, shock_count_axial_100g=0,
            shock_count_lateral_50g=2, shock_count_lateral_100g=0,
            rpm_min=1800.0, rpm_avg=1850.0, rpm_max=1900.0,
            rail_3v3_analog_di=3.3, rail_5v_digital=5.0, rail_3v3_digital=3.3,
            rail_1v9_digital=1.9, rail_1v5_digital=1.5, rail_1v8_analog=1.8,
            rail_3v3_analog=3.3, battery_voltage=13.5,
            current_5v_digital=0.12, current_3v3_digital=0.08, battery_current=0.5,
            gamma=30.0,
            accel_stability_x=0.001, accel_stability_y=0.002,
            accel_stability_z=0.003, accel_stability_zh=0.004,
            survey_total_gravity=1.0, survey_total_magnetic=50.0,
            survey_dip_angle=65.0, survey_inclination=45.0,
            survey_corrected_inclination=45.1, survey_azimuth=180.0,
            survey_corrected_azimuth=180.5,
        )
        values.update(overrides)
        return MDGReading(**values)
    return _build


@pytest.fixture
def mp_records(mp_reading) -> Callable[..., list]:
    """Factory: mp_records([{overrides}, ...]) -> records one second apart."""
    def _build(overrides_list) -> list:
        return [SensorRecord(sequence=i, rtd=float(BASE_RTD + i), mp=mp_reading(**ov))
                for i, ov in enumerate(overrides_list)]
    return _build
