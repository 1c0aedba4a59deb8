#!/usr/bin/env python3
"""
🔥🐧🔥 Comfort Thermal Agent
=========================
Copyright (c) 2025 PNGN-Tec LLC

Keyboard-comfort thermal management for Linux laptops.

Samples CPU package temperature, classifies it into a comfort mode and caps
CPU performance through whichever frequency driver the kernel exposes, so the
keyboard surface stays near ~35°C. One invocation runs one complete cycle; a
systemd timer provides the schedule.

ARCHITECTURE:
- Sysfs access layer (re-rootable so tests run against a fake tree)
- Driver detection: intel_pstate → amd_pstate → generic cpufreq
- Sensor reader: max over CPU package zones, zone0 fallback, 50°C default
- Mode classifier: fixed six-tier table, no hysteresis
- Actuator: best-effort writes, every outcome collected, never short-circuits
- State publisher: status file for the GUI + rolling 2000/1000 line log
- Manual override, read-only snapshot and history report for the GUI/CLI

KEYBOARD MODEL:
T_kbd = 28 + (T_cpu - 28) × 45/100   (integer, truncating)

ERROR POLICY:
Sensor failure degrades to 50°C. Control-file and publish failures are
logged at DEBUG and swallowed. Actuation always precedes publishing.
"""

import sys
import os
import re
import json
import argparse
import logging
import posixpath
from collections import Counter
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from comfort_config import (
    AMD_BOOST,
    AMD_MAX_PERF,
    AMD_PSTATE_DIR,
    CPUINFO_MAX_FREQ,
    DEFAULT_CPU_TEMP,
    DEFAULT_MAX_FREQ_KHZ,
    EPP_GLOB,
    FALLBACK_ZONE_INDEX,
    INTEL_MAX_PERF,
    INTEL_MIN_PERF,
    INTEL_MIN_PERF_PCT,
    INTEL_NO_TURBO,
    INTEL_PSTATE_DIR,
    KEYBOARD_AMBIENT,
    KEYBOARD_ATTENUATION_DEN,
    KEYBOARD_ATTENUATION_NUM,
    LOG_FILE,
    LOG_KEEP_LINES,
    LOG_MAX_LINES,
    LOG_TIME_FORMAT,
    MILLIDEGREE_TO_DEGREE,
    PACKAGE_LABEL_MARKER,
    PACKAGE_LABELS_EXACT,
    PERF_COMFORT,
    PERF_COOL,
    PERF_CRITICAL,
    PERF_HOT,
    PERF_MANUAL_BALANCED,
    PERF_MANUAL_COMFORT,
    PERF_MANUAL_PERFORMANCE,
    PERF_MANUAL_QUIET,
    PERF_OPTIMAL,
    PERF_WARM,
    PLATFORM_PROFILE,
    SCALING_CUR_FREQ,
    SCALING_MAX_FREQ_CPU0,
    SCALING_MAX_FREQ_GLOB,
    SNAPSHOT_CUR_FREQ_MHZ_FALLBACK,
    SNAPSHOT_MAX_FREQ_MHZ_FALLBACK,
    SNAPSHOT_PERF_PCT_FALLBACK,
    STATUS_FILE,
    STATUS_PREFIX,
    THERMAL_ZONE_GLOB,
    THERMAL_ZONE_TEMP,
    THRESHOLD_COMFORT,
    THRESHOLD_COOL,
    THRESHOLD_HOT,
    THRESHOLD_OPTIMAL,
    THRESHOLD_WARM,
    AgentSettings,
    load_settings,
)
from comfort_types import (
    ActuationReport,
    Backend,
    CycleResult,
    EnergyPreference,
    LogEntry,
    ModeProfile,
    OverrideMode,
    ThermalMode,
    ThermalSnapshot,
    ThermalZone,
    WriteOutcome,
)

# Configure logging
logger = logging.getLogger('PNGN.ComfortThermal')

__version__ = '2.1.0'

# ============================================================================
# POLICY TABLES
# ============================================================================

# Exclusive upper bound → mode. Anything at or above the last bound is CRITICAL.
MODE_THRESHOLDS = [
    (THRESHOLD_COOL, ThermalMode.COOL),
    (THRESHOLD_COMFORT, ThermalMode.COMFORT),
    (THRESHOLD_OPTIMAL, ThermalMode.OPTIMAL),
    (THRESHOLD_WARM, ThermalMode.WARM),
    (THRESHOLD_HOT, ThermalMode.HOT),
]

MODE_PROFILES: Dict[ThermalMode, ModeProfile] = {
    ThermalMode.COOL: ModeProfile('COOL', PERF_COOL, EnergyPreference.BALANCE_PERFORMANCE, False),
    ThermalMode.COMFORT: ModeProfile('COMFORT', PERF_COMFORT, EnergyPreference.BALANCE_PERFORMANCE, False),
    ThermalMode.OPTIMAL: ModeProfile('OPTIMAL', PERF_OPTIMAL, EnergyPreference.BALANCE_POWER, False),
    ThermalMode.WARM: ModeProfile('WARM', PERF_WARM, EnergyPreference.BALANCE_POWER, True),
    ThermalMode.HOT: ModeProfile('HOT', PERF_HOT, EnergyPreference.POWER, True),
    ThermalMode.CRITICAL: ModeProfile('CRITICAL', PERF_CRITICAL, EnergyPreference.POWER, True),
}

MANUAL_PROFILES: Dict[OverrideMode, ModeProfile] = {
    OverrideMode.PERFORMANCE: ModeProfile('PERFORMANCE', PERF_MANUAL_PERFORMANCE, EnergyPreference.PERFORMANCE, True),
    OverrideMode.BALANCED: ModeProfile('BALANCED', PERF_MANUAL_BALANCED, EnergyPreference.BALANCE_PERFORMANCE, True),
    OverrideMode.COMFORT: ModeProfile('MANUAL_COMFORT', PERF_MANUAL_COMFORT, EnergyPreference.BALANCE_POWER, False),
    OverrideMode.QUIET: ModeProfile('QUIET', PERF_MANUAL_QUIET, EnergyPreference.POWER, False),
}

# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def _truncating_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero (shell arithmetic semantics)"""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def millidegrees_to_degrees(raw: int) -> int:
    return _truncating_div(raw, MILLIDEGREE_TO_DEGREE)


def estimate_keyboard_temp(cpu_temp: int) -> int:
    """
    Estimate keyboard surface temperature from CPU package temperature.

    Informational only: used for the log, never for control decisions.

    Examples:
        >>> estimate_keyboard_temp(28)
        28
        >>> estimate_keyboard_temp(60)
        42
    """
    delta = _truncating_div((cpu_temp - KEYBOARD_AMBIENT) * KEYBOARD_ATTENUATION_NUM,
                            KEYBOARD_ATTENUATION_DEN)
    return KEYBOARD_AMBIENT + delta

# ============================================================================
# SYSFS ACCESS LAYER
# ============================================================================

class SysfsFilesystem:
    """
    Reads and writes kernel interface files.

    Every path handed in is an absolute kernel path ('/sys/...'); it is
    resolved under `root`, which is '/' on a real system and a scratch
    directory in tests.
    """

    def __init__(self, root: Union[str, Path] = '/'):
        self.root = Path(root)

    def path(self, kernel_path: str) -> Path:
        return self.root / kernel_path.lstrip('/')

    def exists(self, kernel_path: str) -> bool:
        return self.path(kernel_path).exists()

    def is_dir(self, kernel_path: str) -> bool:
        return self.path(kernel_path).is_dir()

    def read_text(self, kernel_path: str) -> str:
        with open(self.path(kernel_path), 'r') as f:
            return f.read().strip()

    def read_int(self, kernel_path: str) -> int:
        return int(self.read_text(kernel_path))

    def glob(self, pattern: str) -> List[str]:
        """Expand a kernel path pattern, returning sorted kernel paths"""
        matches = self.root.glob(pattern.lstrip('/'))
        return sorted('/' + p.relative_to(self.root).as_posix() for p in matches)

    def write_value(self, kernel_path: str, value: Any) -> WriteOutcome:
        """
        Write one value to a control file.

        Never raises. Sysfs attributes cannot be created, so a missing file
        is a failed write rather than a new file.
        """
        text = str(value)
        target = self.path(kernel_path)

        if not self.exists(kernel_path):
            return WriteOutcome(kernel_path, text, ok=False, error='No such file')

        try:
            with open(target, 'w') as f:
                f.write(f"{text}\n")
        except OSError as e:
            return WriteOutcome(kernel_path, text, ok=False, error=str(e))

        return WriteOutcome(kernel_path, text, ok=True)

# ============================================================================
# DRIVER DETECTOR
# ============================================================================

def detect_backend(fs: SysfsFilesystem) -> Backend:
    """Pick the scaling backend: intel_pstate, then amd_pstate, else cpufreq"""
    if fs.is_dir(INTEL_PSTATE_DIR):
        return Backend.INTEL_PSTATE
    if fs.is_dir(AMD_PSTATE_DIR):
        return Backend.AMD_PSTATE
    return Backend.GENERIC_CPUFREQ

# ============================================================================
# SENSOR READER
# ============================================================================

def _zone_index(zone_dir: str) -> Optional[int]:
    suffix = posixpath.basename(zone_dir)[len('thermal_zone'):]
    return int(suffix) if suffix.isdigit() else None


def is_package_zone(label: str) -> bool:
    """Check if a thermal zone label identifies the CPU package"""
    return PACKAGE_LABEL_MARKER in label or label in PACKAGE_LABELS_EXACT


def read_thermal_zones(fs: SysfsFilesystem) -> List[ThermalZone]:
    """
    Enumerate every readable thermal zone.

    Zones whose temp or type file cannot be read are skipped.
    """
    zones = []

    for temp_path in fs.glob(THERMAL_ZONE_GLOB):
        zone_dir = posixpath.dirname(temp_path)
        try:
            label = fs.read_text(f'{zone_dir}/type')
            raw = fs.read_int(temp_path)
        except (OSError, ValueError) as e:
            logger.debug(f"Skipping {zone_dir}: {e}")
            continue

        zones.append(ThermalZone(label=label, temperature_millidegrees=raw,
                                 index=_zone_index(zone_dir)))

    return zones


def read_cpu_temp(fs: SysfsFilesystem) -> int:
    """
    Read a single representative CPU temperature in whole degrees.

    Returns the hottest CPU package zone. Without a package zone, falls back
    to thermal_zone0; without a positive reading there either, returns the
    safe default so actuation still happens.
    """
    package_temps = [
        millidegrees_to_degrees(zone.temperature_millidegrees)
        for zone in read_thermal_zones(fs)
        if is_package_zone(zone.label)
    ]
    hottest = max((t for t in package_temps if t > 0), default=0)
    if hottest > 0:
        return hottest

    fallback_path = THERMAL_ZONE_TEMP.format(index=FALLBACK_ZONE_INDEX)
    try:
        fallback = millidegrees_to_degrees(fs.read_int(fallback_path))
    except (OSError, ValueError) as e:
        logger.debug(f"Fallback zone unreadable: {e}")
        fallback = 0

    if fallback > 0:
        return fallback

    logger.debug(f"No usable CPU temperature, assuming {DEFAULT_CPU_TEMP}°C")
    return DEFAULT_CPU_TEMP

# ============================================================================
# MODE CLASSIFIER
# ============================================================================

def classify_mode(cpu_temp: int) -> ThermalMode:
    for upper_bound, mode in MODE_THRESHOLDS:
        if cpu_temp < upper_bound:
            return mode
    return ThermalMode.CRITICAL


def classify_temperature(cpu_temp: int) -> ModeProfile:
    """Map a CPU temperature to its profile. Pure, stateless, no hysteresis."""
    return MODE_PROFILES[classify_mode(cpu_temp)]

# ============================================================================
# ACTUATOR
# ============================================================================

class FrequencyActuator:
    """
    Applies a ModeProfile through the selected backend's control files.

    Best-effort: each write is attempted independently and its outcome
    recorded. The EPP hint goes to every core regardless of backend.
    Usable on its own for manual overrides.
    """

    def __init__(self, fs: SysfsFilesystem):
        self.fs = fs
        self._backend_writers: Dict[Backend, Callable[[ModeProfile], List[WriteOutcome]]] = {
            Backend.INTEL_PSTATE: self._apply_intel_pstate,
            Backend.AMD_PSTATE: self._apply_amd_pstate,
            Backend.GENERIC_CPUFREQ: self._apply_generic_cpufreq,
        }

    def apply(self, backend: Backend, profile: ModeProfile) -> ActuationReport:
        report = ActuationReport(backend=backend, profile=profile)
        report.outcomes.extend(self._backend_writers[backend](profile))
        report.outcomes.extend(self._write_all(EPP_GLOB, profile.energy_preference.value))

        for outcome in report.outcomes:
            if not outcome.ok:
                logger.debug(f"Write {outcome.value!r} → {outcome.path} failed: {outcome.error}")

        logger.info(f"Applied {profile.name} via {backend.value}: "
                    f"{report.succeeded}/{len(report.outcomes)} writes succeeded")
        return report

    def _write_all(self, pattern: str, value: Any) -> List[WriteOutcome]:
        return [self.fs.write_value(path, value) for path in self.fs.glob(pattern)]

    def _apply_intel_pstate(self, profile: ModeProfile) -> List[WriteOutcome]:
        no_turbo = 0 if profile.turbo_enabled else 1
        return [
            self.fs.write_value(INTEL_MAX_PERF, profile.max_performance_percent),
            self.fs.write_value(INTEL_MIN_PERF, INTEL_MIN_PERF_PCT),
            self.fs.write_value(INTEL_NO_TURBO, no_turbo),
        ]

    def _apply_amd_pstate(self, profile: ModeProfile) -> List[WriteOutcome]:
        # Boost polarity is the inverse of turbo_enabled on this backend
        boost = 0 if profile.turbo_enabled else 1
        return [
            self.fs.write_value(AMD_MAX_PERF, profile.max_performance_percent),
            self.fs.write_value(AMD_BOOST, boost),
        ]

    def _apply_generic_cpufreq(self, profile: ModeProfile) -> List[WriteOutcome]:
        target = self.hardware_max_freq() * profile.max_performance_percent // 100
        return self._write_all(SCALING_MAX_FREQ_GLOB, target)

    def hardware_max_freq(self) -> int:
        """Hardware maximum frequency in kHz, or the fixed fallback"""
        try:
            return self.fs.read_int(CPUINFO_MAX_FREQ)
        except (OSError, ValueError) as e:
            logger.debug(f"cpuinfo_max_freq unreadable, using {DEFAULT_MAX_FREQ_KHZ} kHz: {e}")
            return DEFAULT_MAX_FREQ_KHZ

# ============================================================================
# STATE PUBLISHER
# ============================================================================

def format_log_line(entry: LogEntry) -> str:
    return (f"{entry.timestamp} | CPU:{entry.cpu_temp}C | Kbd:~{entry.keyboard_temp}C | "
            f"{entry.max_performance_percent}% | {entry.mode}")


class StatePublisher:
    """
    Writes the status file and the rolling log.

    Both are single-writer, whole-file or append operations; failures are
    logged and reported as False, never raised.
    """

    def __init__(self, status_path: str = STATUS_FILE, log_path: str = LOG_FILE):
        self.status_path = Path(status_path)
        self.log_path = Path(log_path)

    def publish_status(self, text: str) -> bool:
        try:
            with open(self.status_path, 'w') as f:
                f.write(f"{text}\n")
        except OSError as e:
            logger.debug(f"Status file {self.status_path} not written: {e}")
            return False
        return True

    def append_log(self, entry: LogEntry) -> bool:
        """Trim the log if it is over the ceiling, then append one line"""
        self.trim_log()
        try:
            with open(self.log_path, 'a') as f:
                f.write(format_log_line(entry) + '\n')
        except OSError as e:
            logger.debug(f"Log {self.log_path} not appended: {e}")
            return False
        return True

    def trim_log(self) -> bool:
        """
        Keep only the most recent LOG_KEEP_LINES once the log exceeds
        LOG_MAX_LINES. Returns True if the log was trimmed.

        Works on raw bytes so a corrupt line can never stop the cycle.
        """
        try:
            with open(self.log_path, 'rb') as f:
                lines = f.readlines()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug(f"Log {self.log_path} unreadable: {e}")
            return False

        if len(lines) <= LOG_MAX_LINES:
            return False

        # Per-process name: overlapping runs must not share a temp file
        tmp_path = self.log_path.with_name(f'{self.log_path.name}.{os.getpid()}.tmp')
        try:
            with open(tmp_path, 'wb') as f:
                f.writelines(lines[-LOG_KEEP_LINES:])
            os.replace(tmp_path, self.log_path)
        except OSError as e:
            logger.debug(f"Log {self.log_path} not trimmed: {e}")
            return False

        logger.debug(f"Trimmed {self.log_path} from {len(lines)} to {LOG_KEEP_LINES} lines")
        return True

# ============================================================================
# CYCLE RUNNER
# ============================================================================

@dataclass
class CycleContext:
    """
    External resources one cycle works against.

    Attributes:
        filesystem: Kernel interface access
        status_path: Published mode file
        log_path: Rolling cycle log
        backend: Scaling backend; detected on first use when None
        clock: Source of the log timestamp
    """
    filesystem: SysfsFilesystem
    status_path: str = STATUS_FILE
    log_path: str = LOG_FILE
    backend: Optional[Backend] = None
    clock: Callable[[], datetime] = datetime.now

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> 'CycleContext':
        return cls(
            filesystem=SysfsFilesystem(settings.sysfs_root),
            status_path=settings.status_path,
            log_path=settings.log_path,
        )

    def resolve_backend(self) -> Backend:
        if self.backend is None:
            self.backend = detect_backend(self.filesystem)
            logger.debug(f"Detected scaling backend: {self.backend.value}")
        return self.backend

    def publisher(self) -> StatePublisher:
        return StatePublisher(self.status_path, self.log_path)

    def timestamp(self) -> str:
        return self.clock().strftime(LOG_TIME_FORMAT)


def _execute_cycle(context: CycleContext,
                   manual_profile: Optional[ModeProfile] = None,
                   status_text: Optional[str] = None) -> CycleResult:
    backend = context.resolve_backend()
    cpu_temp = read_cpu_temp(context.filesystem)
    keyboard_temp = estimate_keyboard_temp(cpu_temp)
    profile = manual_profile or classify_temperature(cpu_temp)

    # Actuation precedes publishing
    report = FrequencyActuator(context.filesystem).apply(backend, profile)

    publisher = context.publisher()
    status_written = publisher.publish_status(status_text or f'{STATUS_PREFIX}-{profile.name}')
    log_written = publisher.append_log(LogEntry(
        timestamp=context.timestamp(),
        cpu_temp=cpu_temp,
        keyboard_temp=keyboard_temp,
        max_performance_percent=profile.max_performance_percent,
        mode=profile.name,
    ))

    logger.info(f"CPU {cpu_temp}°C | Kbd ~{keyboard_temp}°C → {profile.name} "
                f"({profile.max_performance_percent}%)")

    return CycleResult(
        cpu_temp=cpu_temp,
        keyboard_temp=keyboard_temp,
        profile=profile,
        backend=backend,
        report=report,
        status_written=status_written,
        log_written=log_written,
    )


def run_cycle(context: CycleContext) -> CycleResult:
    """
    Run one complete control cycle.

    detect → read → classify → actuate → publish, strictly in order.
    Publishing happens even if every control-file write failed.

    Args:
        context: Filesystem, output paths, backend and clock to use

    Returns:
        CycleResult with the measured temperatures, the applied profile and
        every write outcome
    """
    return _execute_cycle(context)

# ============================================================================
# MANUAL OVERRIDE
# ============================================================================

def parse_override_mode(command: str) -> OverrideMode:
    """Parse a cpu-mode command word; raises ValueError for unknown words"""
    word = command.strip().lower()
    for mode in OverrideMode.selectable():
        if mode.command == word:
            return mode
    raise ValueError(f"Unknown mode {command!r}")


def apply_override(mode: OverrideMode, context: CycleContext) -> CycleResult:
    """
    Force a mode chosen by the operator instead of the classified one.

    AUTO (and UNKNOWN, whose command is auto) hands control back to the
    classifier by running a normal cycle.
    """
    if mode not in MANUAL_PROFILES:
        return run_cycle(context)

    result = _execute_cycle(context, MANUAL_PROFILES[mode], mode.command)
    logger.info(f"Manual override {mode.label}: {mode.description}")
    return result


def read_published_mode(status_path: str = STATUS_FILE) -> OverrideMode:
    """
    Interpret the status file.

    'comfort-<TIER>' written by automatic cycles reads as AUTO; a bare
    'comfort' is the manual comfort mode.
    """
    try:
        with open(status_path, 'r') as f:
            content = f.read().strip().lower()
    except (OSError, ValueError):
        return OverrideMode.UNKNOWN

    if 'performance' in content:
        return OverrideMode.PERFORMANCE
    if 'comfort' in content:
        if 'auto' in content or '-' in content:
            return OverrideMode.AUTO
        return OverrideMode.COMFORT
    if 'balanced' in content:
        return OverrideMode.BALANCED
    if 'quiet' in content:
        return OverrideMode.QUIET
    if 'auto' in content:
        return OverrideMode.AUTO
    return OverrideMode.UNKNOWN

# ============================================================================
# THERMAL SNAPSHOT
# ============================================================================

def _read_int_or(fs: SysfsFilesystem, kernel_path: str, default: int) -> int:
    try:
        return fs.read_int(kernel_path)
    except (OSError, ValueError):
        return default


def read_perf_pct(fs: SysfsFilesystem, backend: Backend) -> int:
    """Current performance cap as a percentage"""
    if backend is Backend.INTEL_PSTATE:
        return _read_int_or(fs, INTEL_MAX_PERF, SNAPSHOT_PERF_PCT_FALLBACK)
    if backend is Backend.AMD_PSTATE:
        return _read_int_or(fs, AMD_MAX_PERF, SNAPSHOT_PERF_PCT_FALLBACK)

    scaling_max = _read_int_or(fs, SCALING_MAX_FREQ_CPU0, 0)
    hardware_max = _read_int_or(fs, CPUINFO_MAX_FREQ, 0)
    if scaling_max <= 0 or hardware_max <= 0:
        return SNAPSHOT_PERF_PCT_FALLBACK
    return scaling_max * 100 // hardware_max


def read_snapshot(context: CycleContext) -> ThermalSnapshot:
    """Read the current thermal state without writing anything"""
    fs = context.filesystem
    backend = context.resolve_backend()
    cpu_temp = read_cpu_temp(fs)

    try:
        platform_profile = fs.read_text(PLATFORM_PROFILE)
    except (OSError, ValueError):
        platform_profile = 'unknown'

    return ThermalSnapshot(
        cpu_temp=cpu_temp,
        keyboard_temp=estimate_keyboard_temp(cpu_temp),
        thermal_mode=classify_mode(cpu_temp),
        perf_pct=read_perf_pct(fs, backend),
        current_freq_mhz=_read_int_or(fs, SCALING_CUR_FREQ, SNAPSHOT_CUR_FREQ_MHZ_FALLBACK * 1000) // 1000,
        max_freq_mhz=_read_int_or(fs, SCALING_MAX_FREQ_CPU0, SNAPSHOT_MAX_FREQ_MHZ_FALLBACK * 1000) // 1000,
        mode=read_published_mode(context.status_path),
        platform_profile=platform_profile,
        backend=backend,
    )


def snapshot_to_dict(snapshot: ThermalSnapshot) -> Dict[str, Any]:
    data = asdict(snapshot)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
    data['current_freq_ghz'] = snapshot.current_freq_ghz
    data['max_freq_ghz'] = snapshot.max_freq_ghz
    return data

# ============================================================================
# HISTORY REPORT
# ============================================================================

LOG_LINE_PATTERN = re.compile(
    r'^(?P<time>\d{2}:\d{2}:\d{2}) \| CPU:(?P<cpu>-?\d+)C \| Kbd:~(?P<kbd>-?\d+)C \| '
    r'(?P<perf>\d+)% \| (?P<mode>[A-Z_]+)$'
)


def parse_log_line(line: str) -> Optional[LogEntry]:
    match = LOG_LINE_PATTERN.match(line.strip())
    if not match:
        return None
    return LogEntry(
        timestamp=match.group('time'),
        cpu_temp=int(match.group('cpu')),
        keyboard_temp=int(match.group('kbd')),
        max_performance_percent=int(match.group('perf')),
        mode=match.group('mode'),
    )


def read_log_entries(log_path: str = LOG_FILE) -> List[LogEntry]:
    """Parse the rolling log, skipping malformed lines"""
    try:
        with open(log_path, 'r', errors='replace') as f:
            lines = f.readlines()
    except OSError as e:
        logger.debug(f"Log {log_path} unreadable: {e}")
        return []

    entries = []
    for line in lines:
        entry = parse_log_line(line)
        if entry is not None:
            entries.append(entry)
    return entries


def get_history_report(log_path: str = LOG_FILE) -> Optional[Dict[str, Any]]:
    """
    Summarize the rolling log.

    Returns:
        Dictionary with history statistics, or None when there is no history:
        {
            'entries': int,
            'cpu': {'min': int, 'mean': float, 'max': int, 'p95': float},
            'keyboard': {'mean': float, 'max': int},
            'mean_perf_pct': float,
            'throttled_pct': float,
            'modes': {'WARM': int, ...},
            'last': {...}
        }
    """
    entries = read_log_entries(log_path)
    if not entries:
        return None

    cpu = np.array([e.cpu_temp for e in entries], dtype=np.float64)
    kbd = np.array([e.keyboard_temp for e in entries], dtype=np.float64)
    perf = np.array([e.max_performance_percent for e in entries], dtype=np.float64)

    throttled = np.array([
        e.mode in ThermalMode.__members__ and ThermalMode[e.mode].is_throttling
        for e in entries
    ])

    return {
        'entries': len(entries),
        'cpu': {
            'min': int(cpu.min()),
            'mean': float(cpu.mean()),
            'max': int(cpu.max()),
            'p95': float(np.percentile(cpu, 95)),
        },
        'keyboard': {
            'mean': float(kbd.mean()),
            'max': int(kbd.max()),
        },
        'mean_perf_pct': float(perf.mean()),
        'throttled_pct': float(throttled.mean() * 100),
        'modes': dict(Counter(e.mode for e in entries)),
        'last': asdict(entries[-1]),
    }


def export_history_report(log_path: str = LOG_FILE,
                          output_path: Optional[Path] = None) -> Optional[Path]:
    """
    Export the history report to a JSON file.

    Returns:
        Path to the exported file, or None if there was nothing to export
        or the file could not be written
    """
    report = get_history_report(log_path)
    if not report:
        logger.warning("Cannot export: no history in log")
        return None

    if output_path is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = Path(f"thermal_history_{timestamp}.json")

    try:
        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
    except OSError as e:
        logger.error(f"Failed to export history report: {e}")
        return None

    logger.info(f"History report exported to {output_path}")
    return Path(output_path)

# ============================================================================
# CLI
# ============================================================================

def _describe_result(result: CycleResult) -> str:
    report = result.report
    return (f"CPU:{result.cpu_temp}C | Kbd:~{result.keyboard_temp}C | "
            f"{result.profile.max_performance_percent}% | {result.profile.name} "
            f"[{result.backend.value}, {report.succeeded}/{len(report.outcomes)} writes]")


def cmd_run(args: argparse.Namespace, context: CycleContext) -> int:
    """Run one automatic cycle."""
    print(_describe_result(run_cycle(context)))
    return 0


def cmd_set(args: argparse.Namespace, context: CycleContext) -> int:
    """Apply a manual override."""
    mode = parse_override_mode(args.mode)
    result = apply_override(mode, context)
    print(f"{mode.label} ({mode.description})")
    print(_describe_result(result))
    return 0


def cmd_status(args: argparse.Namespace, context: CycleContext) -> int:
    """Show the current thermal snapshot."""
    print(json.dumps(snapshot_to_dict(read_snapshot(context)), indent=2))
    return 0


def cmd_history(args: argparse.Namespace, context: CycleContext) -> int:
    """Summarize the rolling log."""
    report = get_history_report(context.log_path)
    if report is None:
        print(f"No history in {context.log_path}")
        return 1

    print(json.dumps(report, indent=2))
    if args.export:
        if export_history_report(context.log_path, Path(args.export)) is None:
            return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='comfort-thermal',
        description='Keyboard-comfort thermal management for Linux laptops',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to settings JSON (default: /etc/comfort-thermal.json)')
    parser.add_argument('--sysfs-root', type=str, default=None,
                        help='Prefix for kernel paths (testing)')
    parser.add_argument('--status-file', type=str, default=None, help='Status file path')
    parser.add_argument('--log-file', type=str, default=None, help='Cycle log path')

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run one control cycle')
    run_parser.set_defaults(handler=cmd_run)

    set_parser = subparsers.add_parser('set', help='Force a mode')
    set_parser.add_argument('mode', choices=[m.command for m in OverrideMode.selectable()])
    set_parser.set_defaults(handler=cmd_set)

    status_parser = subparsers.add_parser('status', help='Show current thermal state')
    status_parser.set_defaults(handler=cmd_status)

    history_parser = subparsers.add_parser('history', help='Summarize the cycle log')
    history_parser.add_argument('--export', type=str, default=None, help='Write report JSON here')
    history_parser.set_defaults(handler=cmd_history)

    return parser


def create_cycle_context(settings: Optional[AgentSettings] = None) -> CycleContext:
    """Create a cycle context for the running system"""
    return CycleContext.from_settings(settings or load_settings())


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    if args.sysfs_root:
        settings.sysfs_root = args.sysfs_root
    if args.status_file:
        settings.status_path = args.status_file
    if args.log_file:
        settings.log_path = args.log_file

    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    return args.handler(args, create_cycle_context(settings))


if __name__ == '__main__':
    sys.exit(main())
