"""BLE environment diagnostics for the `doctor` command."""

from __future__ import annotations

import importlib
import json
import shutil
import subprocess
import sys
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, TextIO


@dataclass
class Check:
    name: str
    passed: bool
    message: str


def _run(cmd: List[str]) -> str:
    try:
        return subprocess.check_output(cmd, stderr=subprocess.STDOUT, text=True, timeout=10).strip()
    except (OSError, subprocess.SubprocessError):
        return ""


def check_python_deps(modules=("bleak",)) -> Check:
    missing = []
    for mod in modules:
        try:
            importlib.import_module(mod)
        except ImportError:
            missing.append(mod)
    if missing:
        return Check("Python dependencies", False, f"Missing: {', '.join(missing)}")
    return Check("Python dependencies", True, "All present")


def parse_adapter(output: str) -> Dict[str, str]:
    info = {"adapter": "unknown", "mac": "unknown", "powered": "unknown"}
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("Controller "):
            info["mac"] = line.split()[1]
        elif line.startswith("Name:"):
            info["adapter"] = line.split("Name:", 1)[-1].strip()
        elif line.startswith("Powered:"):
            info["powered"] = line.split("Powered:", 1)[-1].strip().lower()
    return info


def check_adapter(run: Callable[[List[str]], str] = _run) -> Check:
    if sys.platform != "linux":
        return Check("Bluetooth adapter", True, f"Not checked on {sys.platform}")
    btctl = shutil.which("bluetoothctl")
    if not btctl:
        return Check("Bluetooth adapter", False, "bluetoothctl not found (is BlueZ installed?)")
    output = run([btctl, "show"])
    if not output or "No default controller" in output:
        return Check("Bluetooth adapter", False, "No controller available")
    info = parse_adapter(output)
    if info["powered"] != "yes":
        return Check("Bluetooth adapter", False, f"{info['adapter']} ({info['mac']}) is powered off")
    return Check("Bluetooth adapter", True, f"{info['adapter']} ({info['mac']}) powered on")


def check_bluetoothd(run: Callable[[List[str]], str] = _run) -> Check:
    if sys.platform != "linux":
        return Check("Bluetooth service", True, f"Not checked on {sys.platform}")
    systemctl = shutil.which("systemctl")
    if not systemctl:
        return Check("Bluetooth service", True, "systemctl not available; status unknown")
    state = run([systemctl, "is-active", "bluetooth"])
    if state == "active":
        return Check("Bluetooth service", True, "bluetoothd is running")
    return Check("Bluetooth service", False, f"bluetoothd state: {state or 'unknown'}")


def run_checks() -> List[Check]:
    return [check_python_deps(), check_adapter(), check_bluetoothd()]


def troubleshooting_tips(platform: str, verbose: bool) -> List[str]:
    if platform.startswith("linux"):
        tips = [
            "Ensure BlueZ is installed: sudo apt install bluez",
            "Check Bluetooth service: systemctl status bluetooth",
            "Add user to bluetooth group: sudo usermod -aG bluetooth $USER",
        ]
        extra = ["Check adapter: bluetoothctl show", "Restart Bluetooth: sudo systemctl restart bluetooth"]
    elif platform == "darwin":
        tips = [
            "Ensure Bluetooth is enabled in System Settings",
            "Grant Bluetooth permission to your terminal (Privacy & Security > Bluetooth)",
        ]
        extra = ["Try resetting Bluetooth: sudo pkill bluetoothd"]
    else:
        tips = ["Ensure Bluetooth is enabled in Settings", "Check Device Manager for the Bluetooth adapter"]
        extra = ["Update Bluetooth drivers if needed"]
    return tips + extra if verbose else tips


def report(checks: List[Check], *, verbose: bool = False, as_json: bool = False, out: Optional[TextIO] = None) -> bool:
    out = out or sys.stdout
    all_passed = all(check.passed for check in checks)
    if as_json:
        result: Dict[str, Any] = {"checks": [asdict(c) for c in checks], "all_passed": all_passed}
        print(json.dumps(result, indent=2), file=out)
        return all_passed
    print("Results:", file=out)
    for check in checks:
        icon = "[PASS]" if check.passed else "[FAIL]"
        print(f"{icon} {check.name}: {check.message}", file=out)
    print(file=out)
    if all_passed:
        print("All checks passed! Your system is ready to use Aranet devices.", file=out)
    else:
        print("Troubleshooting tips:", file=out)
        for tip in troubleshooting_tips(sys.platform, verbose):
            print(f"  - {tip}", file=out)
    return all_passed


def main() -> None:
    report(run_checks(), as_json=True)


if __name__ == "__main__":
    main()
