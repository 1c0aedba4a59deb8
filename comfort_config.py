#!/usr/bin/env python3
"""
🔥🐧🔥 Comfort Thermal Configuration
=================================
Copyright (c) 2025 PNGN-Tec LLC

Policy constants for keyboard-comfort thermal management on Linux laptops,
plus the small runtime settings layer (file locations, log level) that can
be overridden from a JSON file.
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger('PNGN.ComfortThermal')

# ============================================================================
# MODE THRESHOLDS (°C, upper bound exclusive)
# ============================================================================

THRESHOLD_COOL = 40
THRESHOLD_COMFORT = 45
THRESHOLD_OPTIMAL = 50
THRESHOLD_WARM = 55
THRESHOLD_HOT = 60                      # >= 60 is CRITICAL

# ============================================================================
# PROFILE TABLE VALUES
# ============================================================================

PERF_COOL = 85                          # % of max performance
PERF_COMFORT = 70
PERF_OPTIMAL = 60
PERF_WARM = 50
PERF_HOT = 40
PERF_CRITICAL = 30

# Manual override profiles
PERF_MANUAL_PERFORMANCE = 100           # video calls
PERF_MANUAL_BALANCED = 75               # general use
PERF_MANUAL_COMFORT = 60                # cool keyboard
PERF_MANUAL_QUIET = 40                  # silent

# ============================================================================
# KEYBOARD ESTIMATE
# ============================================================================
# T_kbd = T_amb + (T_cpu - T_amb) * ATTENUATION

KEYBOARD_AMBIENT = 28                   # °C
KEYBOARD_ATTENUATION_NUM = 45
KEYBOARD_ATTENUATION_DEN = 100

# ============================================================================
# SENSOR HEURISTICS
# ============================================================================

PACKAGE_LABEL_MARKER = 'pkg'            # x86_pkg_temp
PACKAGE_LABELS_EXACT = ('TCPU', 'k10temp')
FALLBACK_ZONE_INDEX = 0
DEFAULT_CPU_TEMP = 50                   # °C - safe moderate profile
MILLIDEGREE_TO_DEGREE = 1000

# ============================================================================
# SYSFS PATHS
# ============================================================================

THERMAL_ZONE_GLOB = '/sys/class/thermal/thermal_zone*/temp'
THERMAL_ZONE_TEMP = '/sys/class/thermal/thermal_zone{index}/temp'

CPU_BASE = '/sys/devices/system/cpu'
INTEL_PSTATE_DIR = f'{CPU_BASE}/intel_pstate'
AMD_PSTATE_DIR = f'{CPU_BASE}/amd_pstate'

INTEL_MAX_PERF = f'{INTEL_PSTATE_DIR}/max_perf_pct'
INTEL_MIN_PERF = f'{INTEL_PSTATE_DIR}/min_perf_pct'
INTEL_NO_TURBO = f'{INTEL_PSTATE_DIR}/no_turbo'
INTEL_MIN_PERF_PCT = 10

AMD_MAX_PERF = f'{AMD_PSTATE_DIR}/max_perf_pct'
AMD_BOOST = f'{CPU_BASE}/boost'

CPUINFO_MAX_FREQ = f'{CPU_BASE}/cpu0/cpufreq/cpuinfo_max_freq'
SCALING_CUR_FREQ = f'{CPU_BASE}/cpu0/cpufreq/scaling_cur_freq'
SCALING_MAX_FREQ_CPU0 = f'{CPU_BASE}/cpu0/cpufreq/scaling_max_freq'
SCALING_MAX_FREQ_GLOB = f'{CPU_BASE}/cpu[0-9]*/cpufreq/scaling_max_freq'
EPP_GLOB = f'{CPU_BASE}/cpu[0-9]*/cpufreq/energy_performance_preference'
DEFAULT_MAX_FREQ_KHZ = 4400000

PLATFORM_PROFILE = '/sys/firmware/acpi/platform_profile'

# Snapshot fallbacks when a value cannot be read
SNAPSHOT_PERF_PCT_FALLBACK = 50
SNAPSHOT_CUR_FREQ_MHZ_FALLBACK = 1000
SNAPSHOT_MAX_FREQ_MHZ_FALLBACK = 4400

# ============================================================================
# STATE PUBLISHER
# ============================================================================

STATUS_FILE = '/tmp/cpu-mode.current'
STATUS_PREFIX = 'comfort'
LOG_FILE = '/var/log/thermal-manager.log'
LOG_MAX_LINES = 2000                    # trim when exceeded
LOG_KEEP_LINES = 1000                   # most recent lines kept after trim
LOG_TIME_FORMAT = '%H:%M:%S'

# ============================================================================
# SETTINGS FILE
# ============================================================================

SETTINGS_FILE = '/etc/comfort-thermal.json'


@dataclass
class AgentSettings:
    """
    Runtime locations and log level.

    Attributes:
        sysfs_root: Prefix for every kernel path ('/' on a real system)
        status_path: Published mode file read by the GUI
        log_path: Rolling cycle log
        log_level: Name of a logging level
    """
    sysfs_root: str = '/'
    status_path: str = STATUS_FILE
    log_path: str = LOG_FILE
    log_level: str = 'INFO'


def load_settings(path: Optional[str] = None) -> AgentSettings:
    """
    Load settings from a JSON file, falling back to defaults.

    A missing default file is normal; a missing file named by the caller is
    logged. An unreadable or malformed file is logged and ignored so a broken config never prevents actuation.
    """
    settings = AgentSettings()
    settings_path = Path(path or SETTINGS_FILE)

    if not settings_path.exists():
        if path:
            logger.warning(f"Settings file {settings_path} not found, using defaults")
        return settings

    try:
        with open(settings_path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring settings file {settings_path}: {e}")
        return settings

    if not isinstance(data, dict):
        logger.warning(f"Ignoring settings file {settings_path}: expected a JSON object")
        return settings

    known = {f.name for f in fields(AgentSettings)}
    for key, value in data.items():
        if key in known and isinstance(value, str):
            setattr(settings, key, value)
        else:
            logger.debug(f"Skipping settings key {key!r}")

    return settings
