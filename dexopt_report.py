#!/usr/bin/env python3
"""
DEXscope CLI
------------
Shows, per installed app, how ART compiled it (speed-profile, verify, ...):
- compact table by default, one line per architecture record
- boxed per-app view with app labels (--verbose)
- summary panel with the compiler-filter breakdown

Run it on the device (Termux) or from a workstation with --adb / --serial.
"""

import argparse
import sys
from typing import Dict, List, Optional

from colorama import Fore, Style, deinit, init

from dexopt_scan import (
    AppType,
    CommandError,
    DexoptEntry,
    DexoptReport,
    Package,
    build_report,
    fetch_dexopt_dump,
    fetch_package_list,
    filter_packages,
    is_aapt_available,
    parse_dexopt_dump,
    parse_package_list,
    resolve_labels,
)

NAME_WIDTH = 45
STATUS_WIDTH = 30
BOX_MIN_WIDTH = 40
SUMMARY_WIDTH = 47
SUMMARY_LABEL_WIDTH = 22
PREFIX = f"{Fore.CYAN}[-]{Fore.RESET}"

STATUS_COLORS: Dict[str, str] = {
    "speed-profile": Fore.GREEN,
    "speed": Fore.GREEN,
    "verify": Fore.YELLOW,
    "quicken": Fore.BLUE,
    "run-from-apk": Fore.RED,
    "error": Fore.RED,
    "everything": Fore.MAGENTA,
}


# -------------------- Colors --------------------
def status_color(status: str) -> str:
    return STATUS_COLORS.get(status, Fore.WHITE)


def colorize_line(line: str, status: str) -> str:
    style = Style.BRIGHT if status == "error" else ''
    return f"{style}{status_color(status)}{line}{Style.RESET_ALL}"


# -------------------- Compact View --------------------
def print_header():
    print(f"\n{Style.BRIGHT}{'Package':<{NAME_WIDTH}}{Style.RESET_ALL} | "
          f"{Style.BRIGHT}{'DexOpt Status':<{STATUS_WIDTH}}{Style.RESET_ALL}\n")


def print_compact_entry(pkg: Package, entries: Optional[List[DexoptEntry]]):
    # packages without dexopt records are left out of the table
    if entries is None:
        return
    for i, entry in enumerate(entries):
        colored = colorize_line(entry.raw_line, entry.status)
        if i == 0:
            print(f"{Fore.LIGHTWHITE_EX}{pkg.name:<{NAME_WIDTH}}{Fore.RESET} | {colored}")
        else:
            print(f"{'':<{NAME_WIDTH}} | {colored}")
    print()


# -------------------- Verbose View --------------------
def align_on_colon(entries: List[DexoptEntry]) -> List[str]:
    """Pad the part before the first ':' so the architecture columns line up."""
    widths = [e.raw_line.find(":") for e in entries if ":" in e.raw_line]
    width = max(widths, default=0)
    lines = []
    for entry in entries:
        idx = entry.raw_line.find(":")
        if idx == -1:
            lines.append(entry.raw_line)
        else:
            lines.append(f"{entry.raw_line[:idx]:<{width}}{entry.raw_line[idx:]}")
    return lines


def print_block_entry(pkg: Package, label: Optional[str], entries: Optional[List[DexoptEntry]]):
    display_name = f"{label} ({pkg.name})" if label else pkg.name
    width = max(len(display_name) + 4, BOX_MIN_WIDTH)
    border = "─" * width
    pad_left = (width - len(display_name)) // 2
    pad_right = width - len(display_name) - pad_left

    if label:
        inner = (f"{Style.BRIGHT}{Fore.CYAN}{label}{Style.RESET_ALL} "
                 f"({Style.BRIGHT}{Fore.LIGHTWHITE_EX}{pkg.name}{Style.RESET_ALL})")
    else:
        inner = f"{Style.BRIGHT}{Fore.LIGHTWHITE_EX}{pkg.name}{Style.RESET_ALL}"

    print(f"{Fore.CYAN}┌{border}┐{Fore.RESET}")
    print(f"{Fore.CYAN}│{Fore.RESET}{' ' * pad_left}{inner}{Fore.CYAN}{' ' * pad_right}│{Fore.RESET}")
    print(f"{Fore.CYAN}└{border}┘{Fore.RESET}")

    if entries is None:
        print(f"  {Fore.RED}(no info found){Fore.RESET}")
    else:
        for line, entry in zip(align_on_colon(entries), entries):
            print(f"  {colorize_line(line, entry.status)}")
    print()


# -------------------- Summary --------------------
def centered_line(text: str, style: str, width: int = SUMMARY_WIDTH) -> str:
    pad_start = (width - len(text)) // 2
    pad_end = width - len(text) - pad_start
    return (f"{Fore.LIGHTBLUE_EX}║{Fore.RESET}{' ' * pad_start}{style}{text}{Style.RESET_ALL}"
            f"{' ' * pad_end}{Fore.LIGHTBLUE_EX}║{Fore.RESET}")


def summary_line(label: str, value: str, value_color: str, width: int = SUMMARY_WIDTH) -> str:
    padding = " " * max(width - (5 + SUMMARY_LABEL_WIDTH + len(value)), 0)
    return (f"{Fore.LIGHTBLUE_EX}║{Fore.RESET}  {Style.BRIGHT}{Fore.CYAN}{label:<{SUMMARY_LABEL_WIDTH}}"
            f"{Style.RESET_ALL} : {Style.BRIGHT}{value_color}{value}{Style.RESET_ALL}{padding}"
            f"{Fore.LIGHTBLUE_EX}║{Fore.RESET}")


def print_summary(report: DexoptReport, app_type: AppType):
    width = SUMMARY_WIDTH
    mid = f"{Fore.LIGHTBLUE_EX}╠{'═' * width}╣{Fore.RESET}"

    print(f"\n\n{Fore.LIGHTBLUE_EX}╔{'═' * width}╗{Fore.RESET}")
    print(centered_line("DEXOPT ANALYSIS SUMMARY", Style.BRIGHT + Fore.LIGHTYELLOW_EX))
    print(mid)
    print(summary_line("App Scope", str(app_type), Fore.MAGENTA))
    print(summary_line("Total Apps Checked", str(report.total_displayed), Fore.LIGHTGREEN_EX))
    print(mid)
    print(centered_line("Profile Breakdown", Style.DIM))
    print(mid)
    if not report.stats:
        msg = "No profile data found."
        padding = " " * max(width - (2 + len(msg)), 0)
        print(f"{Fore.LIGHTBLUE_EX}║{Fore.RESET}  {msg}{padding}{Fore.LIGHTBLUE_EX}║{Fore.RESET}")
    else:
        for status, count in report.stats.items():
            print(summary_line(status, str(count), status_color(status)))
    print(f"{Fore.LIGHTBLUE_EX}╚{'═' * width}╝{Fore.RESET}")


def print_aapt_warning():
    print(file=sys.stderr)
    print(f"{Style.BRIGHT}{Fore.YELLOW}Warning: 'aapt' is not installed. "
          f"Some application labels might be missing.{Style.RESET_ALL}", file=sys.stderr)
    print(f"{Style.BRIGHT}{Fore.YELLOW}Install it via 'pkg install aapt' for the best experience.{Style.RESET_ALL}",
          file=sys.stderr)


# -------------------- Main Routine --------------------
def run_report(args) -> int:
    app_type = AppType(args.type)
    print(f"{PREFIX} {Style.BRIGHT}Fetching package list{Style.RESET_ALL} ({app_type}) ...")
    packages = parse_package_list(fetch_package_list(app_type, args.serial, args.adb))
    print(f"{PREFIX} Found {Style.BRIGHT}{Fore.GREEN}{len(packages)}{Style.RESET_ALL} packages.")
    print(f"{PREFIX} {Style.BRIGHT}Fetching dexopt dump...{Style.RESET_ALL}")
    dexopt_map = parse_dexopt_dump(fetch_dexopt_dump(args.serial, args.adb))

    packages = filter_packages(packages, args.filter)
    labels = resolve_labels(packages, max_workers=args.jobs) if args.verbose else None
    report = build_report(packages, dexopt_map, labels)

    if not args.verbose:
        print_header()
    for row in report.rows:
        if args.verbose:
            print_block_entry(row.package, row.label, row.entries)
        else:
            print_compact_entry(row.package, row.entries)

    print_summary(report, app_type)

    if args.verbose and not is_aapt_available():
        print_aapt_warning()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dexscope", description="A tool to analyze dexopt status on Android devices.")
    parser.add_argument('-f', '--filter', type=str, help='Filter packages by name (substring match)')
    parser.add_argument('-t', '--type', choices=[t.value for t in AppType], default=AppType.USER.value,
                        help='Type of applications to analyze (default: user)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show detailed information for each package')
    parser.add_argument('-s', '--serial', type=str, help='Run through adb against this device serial')
    parser.add_argument('--adb', action='store_true', help='Run device commands through adb shell')
    parser.add_argument('-j', '--jobs', type=int, default=None, help='Label resolution workers (default: CPU count)')
    parser.add_argument('--no-color', action='store_true', help='Disable colored output')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    init(autoreset=True, strip=True if args.no_color else None)
    try:
        return run_report(args)
    except CommandError as e:
        print(f"{Fore.RED}Error: {e}{Fore.RESET}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    finally:
        deinit()


if __name__ == "__main__":
    sys.exit(main())
