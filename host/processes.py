"""Process table lookups via ``/proc``."""

from __future__ import annotations

from pathlib import Path


def find_processes(name: str, proc_root: Path = Path("/proc")) -> list[tuple[int, str]]:
    """Return ``(pid, cmdline)`` for processes whose executable is ``name``."""

    matches: list[tuple[int, str]] = []
    for entry in proc_root.iterdir():
        if not entry.name.isdigit():
            continue
        try:
            raw = (entry / "cmdline").read_bytes()
        except OSError:
            continue
        cmdline = raw.replace(b"\x00", b" ").decode("utf-8", errors="replace").strip()
        if not cmdline:
            continue
        executable = Path(cmdline.split(" ", 1)[0]).name
        if executable == name:
            matches.append((int(entry.name), cmdline))
    return sorted(matches)


def is_running(name: str, proc_root: Path = Path("/proc")) -> bool:
    return bool(find_processes(name, proc_root))
