"""
Downhole tool domain knowledge: the single source of truth for thresholds.

Every value here is a default. Deployments override them through the
`thresholds:` / `decoder:` sections of a YAML config (see core/config.py).
Temperatures are in degrees Fahrenheit, voltages in volts, currents in amps,
shock in g.
"""

# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

FORMAT_MP = "MP"
FORMAT_MDG = "MDG"
FORMAT_MIXED = "MIXED"
KNOWN_FORMATS = (FORMAT_MP, FORMAT_MDG, FORMAT_MIXED)

# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

MAX_CORRUPT_RATIO = 0.5           # corrupt / (corrupt + valid) above this aborts
SIGNATURE_SCAN_FRAMES = 8        # frame slots inspected during format detection
MIN_SIGNATURE_SCORE = 0.5         # fraction of scanned slots that must carry a signature
MAX_CORRUPT_OFFSETS = 50          # corrupt frame offsets retained in DecodeStats
MAX_DUMP_BYTES = 50 * 1024 * 1024 # largest accepted upload

# Container magic numbers (payload is decompressed before detection)
LZ4_FRAME_MAGIC = b"\x04\x22\x4d\x18"
BZ2_MAGIC = b"BZh"

# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

MERGE_TOLERANCE_SEC = 1.0         # MP <-> MDG nearest-match window

# ---------------------------------------------------------------------------
# Health analyzer
# ---------------------------------------------------------------------------

SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARNING = "WARNING"
SEVERITY_INFO = "INFO"
SEVERITY_RANK = {SEVERITY_CRITICAL: 0, SEVERITY_WARNING: 1, SEVERITY_INFO: 2}

STATUS_CRITICAL = "CRITICAL"
STATUS_WARNING = "WARNING"
STATUS_OPERATIONAL = "OPERATIONAL"

# A temperature beyond this magnitude is an ADC/sensor fault marker
SENTINEL_MAGNITUDE = 1e10

# Adjacent-record delta thresholds (strict >)
TEMP_DELTA_THRESHOLD = 5.0
VOLTAGE_DELTA_THRESHOLD = 0.5
CURRENT_DELTA_THRESHOLD = 0.1
DELTA_PRECISION = 9               # decimals kept before comparing a delta
SPIKE_MAGNITUDE_CRITICAL = 4.0    # max delta > N x threshold is critical

# Occurrence-rate grading: (warning_rate, critical_rate), strict >
COMM_ERROR_RATES = (0.0, 0.10)
INVALID_READING_RATES = (0.05, 0.20)
PULSE_ERROR_RATES = (0.02, 0.10)
TEMP_SPIKE_RATES = (0.01, 0.05)
VOLTAGE_SPIKE_RATES = (0.01, 0.05)
CURRENT_SPIKE_RATES = (0.02, 0.10)
HIGH_TEMPERATURE_RATES = (0.0, 0.05)
LOW_BATTERY_RATES = (0.0, 0.05)
HIGH_BATTERY_RATES = (0.0, 0.10)
MOTOR_OVERCURRENT_RATES = (0.0, 0.05)
PUMP_OFF_LOAD_RATES = (0.0, 0.05)
HIGH_SHOCK_RATES = (0.01, 0.05)
GAMMA_RATES = (0.05, 0.25)

# Physical limits
HIGH_TEMPERATURE_F = 200.0
LOW_BATTERY_VOLTAGE = 11.5
HIGH_BATTERY_VOLTAGE = 15.5
MOTOR_OVERCURRENT_AMPS = 2.0
PUMP_OFF_MOTOR_AMPS = 1.2         # motor load while flow is reported off
HIGH_SHOCK_G = 6.0
SEVERE_SHOCK_G = 20.0
GAMMA_LOW_CPS = 15.0
GAMMA_HIGH_CPS = 45.0
RAIL_CV_WARNING = 0.10            # coefficient of variation per voltage rail
RAIL_CV_CRITICAL = 0.20
RAIL_DEVIATION_FRACTION = 0.10  # rail reading off its mean by more than this counts
RAIL_MIN_SAMPLES = 3

# Temperature bands and statistical outliers
ELEVATED_TEMPERATURE_F = 160.0    # (160, 200] deg F is the early-warning band
ELEVATED_TEMPERATURE_FRACTION = 0.05
LOW_TEMPERATURE_F = 50.0
LOW_TEMPERATURE_FRACTION = 0.10
TEMPERATURE_IQR_FACTOR = 1.5      # outside [Q1 - k*IQR, Q3 + k*IQR]
TEMPERATURE_IQR_MIN_SAMPLES = 100

# Vibration magnitude sqrt(x^2 + y^2 + z^2) against the run mean
VIBRATION_FACTOR = 1.5
VIBRATION_FRACTION = 0.05
VIBRATION_MIN_SAMPLES = 10

# Rotation speed (MDG rpm_max, rpm spread = max - min)
HIGH_RPM = 4000.0
SEVERE_RPM = 4500.0
HIGH_RPM_CRITICAL_FRACTION = 0.10
LOW_RPM = 500.0
LOW_RPM_FRACTION = 0.15
RPM_SPREAD_AVG = 200.0            # reported when avg spread or max spread exceeds
RPM_SPREAD_MAX = 500.0
RPM_SPREAD_AVG_WARNING = 400.0
RPM_SPREAD_CRITICAL = 1000.0

# Motor degradation: 1 / (current x actuation time), first vs last quarter
MOTOR_DEGRADATION_MIN_SAMPLES = 50
MOTOR_DEGRADATION_WARNING_PERCENT = 15.0
MOTOR_DEGRADATION_CRITICAL_PERCENT = 25.0

# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

# Qualified field -> bin width
HISTOGRAM_WIDTHS = {
    "mp.temperature": 10.0,
    "mp.battery_voltage": 0.5,
    "mdg.peak_shock": 2.0,
}

# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

DEFAULT_MAX_WORKERS = 4

# Dump lifecycle: pending -> processing -> {completed, error}
DUMP_PENDING = "pending"
DUMP_PROCESSING = "processing"
DUMP_COMPLETED = "completed"
DUMP_ERROR = "error"
TERMINAL_STATUSES = (DUMP_COMPLETED, DUMP_ERROR)
