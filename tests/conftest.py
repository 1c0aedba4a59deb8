"""Shared fixtures: a fake sysfs tree rooted in a temporary directory."""

from datetime import datetime
from pathlib import Path

import pytest

from comfort_thermal import CycleContext, SysfsFilesystem


class FakeSysfs:
    """Builds the parts of /sys the agent touches under a scratch root."""

    def __init__(self, root: Path):
        self.root = root

    def path(self, kernel_path: str) -> Path:
        return self.root / kernel_path.lstrip('/')

    def write(self, kernel_path: str, value) -> Path:
        target = self.path(kernel_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"{value}\n")
        return target

    def read(self, kernel_path: str) -> str:
        return self.path(kernel_path).read_text().strip()

    def add_zone(self, index: int, label: str, millidegrees) -> None:
        self.write(f'/sys/class/thermal/thermal_zone{index}/type', label)
        self.write(f'/sys/class/thermal/thermal_zone{index}/temp', millidegrees)

    def add_intel_pstate(self) -> None:
        base = '/sys/devices/system/cpu/intel_pstate'
        self.write(f'{base}/max_perf_pct', 100)
        self.write(f'{base}/min_perf_pct', 20)
        self.write(f'{base}/no_turbo', 0)

    def add_amd_pstate(self) -> None:
        self.write('/sys/devices/system/cpu/amd_pstate/max_perf_pct', 100)
        self.write('/sys/devices/system/cpu/boost', 1)

    def add_cpus(self, count: int, max_freq_khz=4000000, epp: bool = True) -> None:
        for cpu in range(count):
            base = f'/sys/devices/system/cpu/cpu{cpu}/cpufreq'
            self.write(f'{base}/cpuinfo_max_freq', max_freq_khz)
            self.write(f'{base}/scaling_max_freq', max_freq_khz)
            self.write(f'{base}/scaling_cur_freq', 2500000)
            if epp:
                self.write(f'{base}/energy_performance_preference', 'default')

    def block(self, kernel_path: str) -> None:
        """Turn a control file into a directory so writes to it fail."""
        target = self.path(kernel_path)
        if target.exists():
            target.unlink()
        target.mkdir(parents=True)


@pytest.fixture
def sysfs(tmp_path):
    root = tmp_path / 'root'
    root.mkdir()
    return FakeSysfs(root)


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2025, 6, 1, 14, 5, 9)


@pytest.fixture
def context(sysfs, tmp_path, fixed_clock):
    return CycleContext(
        filesystem=SysfsFilesystem(sysfs.root),
        status_path=str(tmp_path / 'cpu-mode.current'),
        log_path=str(tmp_path / 'thermal-manager.log'),
        clock=fixed_clock,
    )
