#!/usr/bin/env python3
"""
🐧 Comfort Thermal Type Definitions
==================================
Copyright (c) 2025 PNGN-Tec LLC

Shared type system for the comfort thermal agent. Enums and dataclasses used
by the sensor reader, classifier, actuator, publisher and CLI.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum

# ============================================================================
# ENUMS
# ============================================================================

class Backend(Enum):
    """Frequency scaling backend, selected once per run"""
    INTEL_PSTATE = 'intel_pstate'
    AMD_PSTATE = 'amd_pstate'
    GENERIC_CPUFREQ = 'cpufreq'

class ThermalMode(Enum):
    """Thermal policy tier derived from CPU package temperature"""
    COOL = 'COOL'
    COMFORT = 'COMFORT'
    OPTIMAL = 'OPTIMAL'
    WARM = 'WARM'
    HOT = 'HOT'
    CRITICAL = 'CRITICAL'

    @property
    def is_throttling(self) -> bool:
        """Check if the tier caps performance at half or less"""
        return self in (ThermalMode.WARM, ThermalMode.HOT, ThermalMode.CRITICAL)

class EnergyPreference(Enum):
    """Energy Performance Preference hint strings"""
    PERFORMANCE = 'performance'
    BALANCE_PERFORMANCE = 'balance_performance'
    BALANCE_POWER = 'balance_power'
    POWER = 'power'

class OverrideMode(Enum):
    """Operator-selected mode, as written by the cpu-mode command"""
    PERFORMANCE = 'performance'
    COMFORT = 'comfort'
    BALANCED = 'balanced'
    QUIET = 'quiet'
    AUTO = 'auto'
    UNKNOWN = 'unknown'

    @property
    def command(self) -> str:
        """Command word accepted by `set` (UNKNOWN falls back to auto)"""
        if self is OverrideMode.UNKNOWN:
            return OverrideMode.AUTO.value
        return self.value

    @property
    def label(self) -> str:
        return self.name

    @property
    def description(self) -> str:
        return _OVERRIDE_DESCRIPTIONS[self]

    @classmethod
    def selectable(cls) -> List['OverrideMode']:
        """Modes an operator can choose"""
        return [cls.PERFORMANCE, cls.COMFORT, cls.BALANCED, cls.QUIET, cls.AUTO]

_OVERRIDE_DESCRIPTIONS = {
    OverrideMode.PERFORMANCE: '100% - Video calls',
    OverrideMode.COMFORT: '60% - Cool keyboard',
    OverrideMode.BALANCED: '75% - General use',
    OverrideMode.QUIET: '40% - Silent',
    OverrideMode.AUTO: 'Automatic',
    OverrideMode.UNKNOWN: 'Unknown',
}

# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ThermalZone:
    """Single kernel thermal zone reading (transient, read each cycle)"""
    label: str
    temperature_millidegrees: int
    index: Optional[int] = None

@dataclass(frozen=True)
class ModeProfile:
    """
    Tuning parameters applied for one thermal mode.

    Attributes:
        name: Mode label written to the status file and log
        max_performance_percent: Cap on CPU performance (0-100)
        energy_preference: EPP hint written to every core
        turbo_enabled: Turbo flag; Intel writes its inverse to no_turbo,
            AMD writes its inverse to boost
    """
    name: str
    max_performance_percent: int
    energy_preference: EnergyPreference
    turbo_enabled: bool

@dataclass
class WriteOutcome:
    """Result of one control-file write"""
    path: str
    value: str
    ok: bool
    error: Optional[str] = None

@dataclass
class ActuationReport:
    """All write outcomes from applying one profile"""
    backend: Backend
    profile: ModeProfile
    outcomes: List[WriteOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0

@dataclass
class LogEntry:
    """One line of the rolling cycle log"""
    timestamp: str
    cpu_temp: int
    keyboard_temp: int
    max_performance_percent: int
    mode: str

@dataclass
class CycleResult:
    """Everything one control cycle measured, decided and did"""
    cpu_temp: int
    keyboard_temp: int
    profile: ModeProfile
    backend: Backend
    report: ActuationReport
    status_written: bool = False
    log_written: bool = False

@dataclass
class ThermalSnapshot:
    """Read-only view of the current thermal and frequency state"""
    cpu_temp: int
    keyboard_temp: int
    thermal_mode: ThermalMode
    perf_pct: int
    current_freq_mhz: int
    max_freq_mhz: int
    mode: OverrideMode
    platform_profile: str
    backend: Backend

    @property
    def current_freq_ghz(self) -> float:
        return self.current_freq_mhz / 1000.0

    @property
    def max_freq_ghz(self) -> float:
        return self.max_freq_mhz / 1000.0

# ============================================================================
# EXPORT ALL PUBLIC TYPES
# ============================================================================

__all__ = [
    # Enums
    'Backend',
    'ThermalMode',
    'EnergyPreference',
    'OverrideMode',

    # Data structures
    'ThermalZone',
    'ModeProfile',
    'WriteOutcome',
    'ActuationReport',
    'LogEntry',
    'CycleResult',
    'ThermalSnapshot',
]
