import re

import pytest
from colorama import Fore, Style

import dexopt_report
from dexopt_report import align_on_colon, colorize_line, main, status_color
from dexopt_scan import CommandError, DexoptEntry

PM_OUTPUT = """\
package:/data/app/a-1/base.apk=com.a
package:/system/app/Chrome/Chrome.apk=com.android.chrome
package:/data/app/w-1/base.apk=com.whatsapp
"""

DEXOPT_DUMP = """\
  [com.android.chrome]
    path: /system/app/Chrome/Chrome.apk
      arm64: [status=speed-profile] [reason=bg-dexopt]
      arm: [status=verify] [reason=install]
  [com.whatsapp]
      arm64: [status=run-from-apk] [reason=unknown]
"""


def strip_ansi(text):
    return re.sub(r"\x1B\[[0-?]*[ -\/]*[@-~]", "", text)


@pytest.fixture
def fake_device(monkeypatch):
    calls = {}

    def fake_package_list(app_type, serial=None, use_adb=False):
        calls["package_list"] = (app_type, serial, use_adb)
        return PM_OUTPUT

    def fake_dump(serial=None, use_adb=False):
        calls["dump"] = (serial, use_adb)
        return DEXOPT_DUMP

    monkeypatch.setattr(dexopt_report, "fetch_package_list", fake_package_list)
    monkeypatch.setattr(dexopt_report, "fetch_dexopt_dump", fake_dump)
    monkeypatch.setattr(dexopt_report, "resolve_labels",
                        lambda packages, max_workers=None: ["Chrome" if p.name == "com.android.chrome" else None
                                                            for p in packages])
    monkeypatch.setattr(dexopt_report, "is_aapt_available", lambda: True)
    return calls


def test_status_colors():
    assert status_color("speed-profile") == Fore.GREEN
    assert status_color("verify") == Fore.YELLOW
    assert status_color("run-from-apk") == Fore.RED
    assert status_color("something-new") == Fore.WHITE
    assert colorize_line("x", "error").startswith(Style.BRIGHT + Fore.RED)
    assert strip_ansi(colorize_line("arm64: [status=verify]", "verify")) == "arm64: [status=verify]"


def test_align_on_colon():
    entries = [DexoptEntry("arm64: [status=speed]", "speed"),
               DexoptEntry("arm: [status=verify]", "verify"),
               DexoptEntry("no colon here", "unknown")]
    assert align_on_colon(entries) == ["arm64: [status=speed]", "arm  : [status=verify]", "no colon here"]
    assert align_on_colon([]) == []


def test_compact_report(fake_device, capsys):
    assert main(["--no-color"]) == 0
    out = strip_ansi(capsys.readouterr().out)
    lines = out.splitlines()

    assert "Found 3 packages." in out
    chrome_line = next(line for line in lines if line.startswith("com.android.chrome"))
    assert chrome_line.endswith("| arm64: [status=speed-profile] [reason=bg-dexopt]")
    assert chrome_line.index("|") == dexopt_report.NAME_WIDTH + 1
    assert f"{'':<{dexopt_report.NAME_WIDTH}} | arm: [status=verify] [reason=install]" in lines
    # packages without records are not listed in the compact table
    assert not any(line.startswith("com.a ") for line in lines)
    assert "Total Apps Checked     : 2" in out
    assert "speed-profile          : 1" in out
    assert "run-from-apk           : 1" in out
    assert out.index("run-from-apk           : 1") < out.index("speed-profile          : 1")
    assert fake_device["package_list"][0].value == "user"


def test_verbose_report(fake_device, capsys):
    assert main(["-v", "-t", "all", "--no-color"]) == 0
    captured = capsys.readouterr()
    out = strip_ansi(captured.out)

    assert "Chrome (com.android.chrome)" in out
    assert "(no info found)" in out
    assert "  arm64: [status=speed-profile] [reason=bg-dexopt]" in out
    assert "  arm  : [status=verify] [reason=install]" in out
    assert "App Scope              : All" in out
    assert "Warning: 'aapt'" not in captured.err


def test_verbose_report_warns_without_aapt(fake_device, monkeypatch, capsys):
    monkeypatch.setattr(dexopt_report, "is_aapt_available", lambda: False)
    assert main(["--verbose", "--no-color"]) == 0
    err = strip_ansi(capsys.readouterr().err)
    assert "Warning: 'aapt' is not installed" in err
    assert "pkg install aapt" in err


def test_filter_and_adb_routing(fake_device, capsys):
    assert main(["-f", "whatsapp", "-s", "emulator-5554", "--no-color"]) == 0
    out = strip_ansi(capsys.readouterr().out)
    assert "com.whatsapp" in out
    assert "com.android.chrome" not in out
    assert "Total Apps Checked     : 1" in out
    assert fake_device["package_list"][1] == "emulator-5554"
    assert fake_device["dump"] == ("emulator-5554", False)


def test_empty_summary(monkeypatch, capsys):
    monkeypatch.setattr(dexopt_report, "fetch_package_list", lambda app_type, serial=None, use_adb=False: "")
    monkeypatch.setattr(dexopt_report, "fetch_dexopt_dump", lambda serial=None, use_adb=False: "")
    assert main(["--no-color"]) == 0
    out = strip_ansi(capsys.readouterr().out)
    assert "No profile data found." in out
    assert "Total Apps Checked     : 0" in out


def test_fetch_failure_exits_with_error(monkeypatch, capsys):
    def broken(app_type, serial=None, use_adb=False):
        raise CommandError("Failed to execute command: sh -c pm list packages -f -3")

    monkeypatch.setattr(dexopt_report, "fetch_package_list", broken)
    assert main(["--no-color"]) == 1
    assert "Error: Failed to execute command" in strip_ansi(capsys.readouterr().err)


def test_rejects_unknown_type():
    with pytest.raises(SystemExit):
        main(["--type", "vendor"])
