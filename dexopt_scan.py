#!/usr/bin/env python3
"""
Dexopt status scanner (DEXscope core)
-------------------------------------
- Lists installed packages (pm list packages -f)
- Reads the ART dexopt dump (dumpsys package dexopt)
- Resolves human-readable app labels (APK manifest, falling back to aapt)
- Joins everything into a per-package report with a compiler-filter tally

Commands run locally through `sh -c` (on-device, e.g. Termux) or through
`adb shell` when a serial / adb mode is requested.
"""

import os
import re
import shutil
import subprocess
import sys
import unicodedata
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from colorama import Fore
from pyaxmlparser import APK

COMMAND_TIMEOUT = 30  # seconds, pm / dumpsys
AAPT_TIMEOUT = 20     # seconds, per APK

PACKAGE_PREFIX = "package:"
BADGING_LABEL_PREFIX = "application-label:'"
UNKNOWN_STATUS = "unknown"

ARCH_RE = re.compile(r"(arm64:|arm:)")
FILTER_EXTRACT_RE = re.compile(r"\b(?:status|filter)=([^\]\s]+)")


class CommandError(RuntimeError):
    """Raised when an external command could not be started at all."""


class AppType(Enum):
    USER = "user"
    SYSTEM = "system"
    ALL = "all"

    @property
    def pm_flag(self) -> str:
        return {AppType.USER: "-3", AppType.SYSTEM: "-s", AppType.ALL: ""}[self]

    def __str__(self) -> str:
        return self.value.capitalize()


# -------------------- Data Model --------------------
@dataclass(frozen=True)
class Package:
    name: str
    path: str


@dataclass(frozen=True)
class DexoptEntry:
    raw_line: str
    status: str


@dataclass
class ReportRow:
    package: Package
    label: Optional[str] = None
    entries: Optional[List[DexoptEntry]] = None


@dataclass
class DexoptReport:
    """Joined view handed to the presentation layer."""
    rows: List[ReportRow] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    total_displayed: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_packages": len(self.rows),
            "total_displayed": self.total_displayed,
            "stats": dict(self.stats),
            "rows": [
                {
                    "name": row.package.name,
                    "path": row.package.path,
                    "label": row.label,
                    "entries": None if row.entries is None else [
                        {"raw_line": e.raw_line, "status": e.status} for e in row.entries
                    ],
                }
                for row in self.rows
            ],
        }


# -------------------- Command Runner --------------------
def build_device_command(command: str, serial: Optional[str] = None, use_adb: bool = False) -> List[str]:
    """Wrap a device shell command for local execution or for adb."""
    if use_adb or serial:
        prefix = ["adb"]
        if serial:
            prefix += ["-s", serial]
        return prefix + ["shell", command]
    return ["sh", "-c", command]


def run_shell_command(cmd: List[str], timeout: int = COMMAND_TIMEOUT) -> str:
    """Run a command and return its stdout.

    Output is kept on a non-zero exit, since pm and dumpsys may still print
    usable text. Raises CommandError only when the process cannot be started.
    """
    try:
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout, text=True,
                                errors="replace")
    except subprocess.TimeoutExpired:
        print(f"{Fore.YELLOW}Warning: command timed out: {' '.join(cmd)}{Fore.RESET}", file=sys.stderr)
        return ''
    except OSError as e:
        raise CommandError(f"Failed to execute command: {' '.join(cmd)} ({e})") from e
    if result.returncode != 0 and result.stderr.strip():
        print(f"{Fore.YELLOW}Warning: {' '.join(cmd)} exited with {result.returncode}: "
              f"{result.stderr.strip()}{Fore.RESET}", file=sys.stderr)
    return result.stdout or ''


def fetch_package_list(app_type: AppType = AppType.USER, serial: Optional[str] = None, use_adb: bool = False) -> str:
    command = f"pm list packages -f {app_type.pm_flag}".strip()
    return run_shell_command(build_device_command(command, serial, use_adb))


def fetch_dexopt_dump(serial: Optional[str] = None, use_adb: bool = False) -> str:
    return run_shell_command(build_device_command("dumpsys package dexopt", serial, use_adb))


# -------------------- Package List --------------------
def split_lines(raw: str) -> List[str]:
    """Split on '\\n' only, dropping a trailing '\\r'. Form feeds, \\x85 and \\u2028 stay in the line."""
    lines = raw.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_package_list(raw: str) -> List[Package]:
    """Parse `pm list packages -f` output into packages sorted by name."""
    packages = []
    for line in split_lines(raw):
        line = line.strip()
        if not line.startswith(PACKAGE_PREFIX):
            continue
        path, sep, name = line[len(PACKAGE_PREFIX):].rpartition("=")
        if not sep:
            continue
        packages.append(Package(name=name.strip(), path=path.strip()))
    packages.sort(key=lambda p: p.name)
    return packages


def filter_packages(packages: Sequence[Package], needle: Optional[str]) -> List[Package]:
    if not needle:
        return list(packages)
    return [p for p in packages if needle in p.name]


# -------------------- Dexopt Dump --------------------
def is_package_header(line: str) -> bool:
    # e.g. '[com.android.chrome]'; '[status=verify]' and '[not a package]' don't count
    return line.startswith("[") and line.endswith("]") and " " not in line and "=" not in line


def extract_status(line: str) -> str:
    m = FILTER_EXTRACT_RE.search(line)
    return m.group(1) if m else UNKNOWN_STATUS


def parse_dexopt_dump(raw: str) -> Dict[str, List[DexoptEntry]]:
    """Map package name -> per-architecture dexopt entries, in dump order.

    A package whose header shows up twice keeps a single merged list.
    Architecture lines seen before any header are dropped.
    """
    results: Dict[str, List[DexoptEntry]] = defaultdict(list)
    current_pkg = None
    for line in split_lines(raw):
        line = line.strip()
        if not line:
            continue
        if is_package_header(line):
            current_pkg = line[1:-1]
        elif current_pkg is not None and ARCH_RE.search(line):
            results[current_pkg].append(DexoptEntry(raw_line=line, status=extract_status(line)))
    return dict(results)


# -------------------- App Labels --------------------
def normalize_label(label: Optional[str]) -> str:
    if not label:
        return ''
    return label.strip().replace("\r", " ").replace("\n", " ")


def looks_like_class_name(label: str, package_name: str) -> bool:
    """True for labels that are really class names, e.g. 'com.foo.MainApplication'.

    The package name itself is accepted as a label.
    """
    dotted = "." in label and " " not in label and label != package_name
    class_chars = all(is_alphanumeric(c) or c in "._" for c in label)
    return dotted and class_chars


def is_alphanumeric(c: str) -> bool:
    # letters, numbers and combining marks (Indic vowel signs etc.); str.isalnum() rejects marks
    return unicodedata.category(c)[0] in "LN" or unicodedata.category(c) in ("Mn", "Mc")


def read_apk_label(path: str) -> Optional[str]:
    """Read android:label from the APK manifest, resolving string resources."""
    try:
        return APK(path).application
    except Exception:
        # missing or malformed APKs count as "no label"
        return None


def parse_badging_label(output: str) -> Optional[str]:
    for line in split_lines(output):
        line = line.strip()
        if line.startswith(BADGING_LABEL_PREFIX):
            label = line[len(BADGING_LABEL_PREFIX):]
            end = label.find("'")
            if end != -1:
                return label[:end]
    return None


def read_aapt_label(path: str, timeout: int = AAPT_TIMEOUT) -> Optional[str]:
    """Slow path: `aapt dump badging`."""
    try:
        result = subprocess.run(["aapt", "dump", "badging", path], stdout=subprocess.PIPE,
                                stderr=subprocess.PIPE, timeout=timeout, text=True, errors="replace")
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return parse_badging_label(result.stdout)


def is_aapt_available() -> bool:
    return shutil.which("aapt") is not None


def resolve_label(package: Package,
                  apk_reader: Callable[[str], Optional[str]] = read_apk_label,
                  aapt_reader: Callable[[str], Optional[str]] = read_aapt_label) -> Optional[str]:
    """Best-effort display label for a package, or None."""
    label = normalize_label(apk_reader(package.path))
    if label and not looks_like_class_name(label, package.name):
        return label
    # the manifest gave nothing usable, ask aapt
    return aapt_reader(package.path)


def resolve_labels(packages: Sequence[Package],
                   resolver: Callable[[Package], Optional[str]] = resolve_label,
                   max_workers: Optional[int] = None) -> List[Optional[str]]:
    """Resolve labels in parallel; result[i] belongs to packages[i]."""
    if not packages:
        return []
    with ThreadPoolExecutor(max_workers=max_workers or os.cpu_count()) as executor:
        return list(executor.map(resolver, packages))


# -------------------- Aggregation --------------------
def build_report(packages: Sequence[Package],
                 dexopt_map: Dict[str, List[DexoptEntry]],
                 labels: Optional[Sequence[Optional[str]]] = None) -> DexoptReport:
    """Join packages with their dexopt entries and labels, tallying statuses."""
    report = DexoptReport()
    counts: Dict[str, int] = defaultdict(int)
    for i, pkg in enumerate(packages):
        entries = dexopt_map.get(pkg.name)
        if entries is not None:
            report.total_displayed += 1
            for entry in entries:
                counts[entry.status] += 1
        label = labels[i] if labels is not None else None
        report.rows.append(ReportRow(package=pkg, label=label, entries=entries))
    report.stats = {status: counts[status] for status in sorted(counts)}
    return report


def scan(app_type: AppType = AppType.USER, needle: Optional[str] = None, with_labels: bool = False,
         serial: Optional[str] = None, use_adb: bool = False, jobs: Optional[int] = None) -> DexoptReport:
    """Fetch, parse and join in one go. Raises CommandError if a fetch can't start."""
    packages = parse_package_list(fetch_package_list(app_type, serial, use_adb))
    dexopt_map = parse_dexopt_dump(fetch_dexopt_dump(serial, use_adb))
    packages = filter_packages(packages, needle)
    labels = resolve_labels(packages, max_workers=jobs) if with_labels else None
    return build_report(packages, dexopt_map, labels)
