"""Parsing of ``vmmap`` output and System Integrity Protection checks."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass

from chatlogkit.model import ChatlogError

FILTER_REGION_TYPE = "MALLOC_NANO"
FILTER_SHRMOD = "SM=PRV"
COMMAND_VMMAP = "vmmap"

_HEADER_PREFIX = "==== Writable regions for"
_LINE_RE = re.compile(
    r"^(\S+)\s+([0-9a-f]+)-([0-9a-f]+)\s+\[\s*(\S+)\s+(\S+)(?:\s+\S+){2}\]"
    r"\s+(\S+)\s+(\S+)(?:\s+\S+)?\s+(.*)$"
)
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)([KMGB]+)?$", re.ASCII)
_MULTIPLIERS = {
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024 * 1024,
    "MB": 1024 * 1024,
    "G": 1024 * 1024 * 1024,
    "GB": 1024 * 1024 * 1024,
}


@dataclass(frozen=True)
class MemRegion:
    """One writable memory region reported by ``vmmap``."""

    region_type: str
    start: int
    end: int
    vsize: int
    rsdnt: int
    shrmod: str
    permissions: str
    region_detail: str


def _run(args: list[str]) -> str:
    try:
        result = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    except OSError as exc:
        raise ChatlogError(f"run cmd failed: {exc}") from exc
    output = result.stdout.decode("utf-8", errors="replace")
    if result.returncode != 0:
        raise ChatlogError(f"run cmd failed: exit status {result.returncode}")
    return output


def get_vmmap(pid: int) -> list[MemRegion]:
    """Run ``vmmap`` for a process and parse its writable regions."""
    return load_vmmap(_run([COMMAND_VMMAP, "-wide", str(pid)]))


def load_vmmap(output: str) -> list[MemRegion]:
    """Parse the writable-regions section of ``vmmap -wide`` output."""
    lines = (line.removesuffix("\r") for line in output.split("\n"))

    for line in lines:
        if line.startswith(_HEADER_PREFIX):
            next(lines, None)  # column headers
            break
    else:
        return []

    regions = []
    for line in lines:
        if not line:
            continue
        match = _LINE_RE.match(line)
        if match is None:
            continue
        regions.append(
            MemRegion(
                region_type=match.group(1).strip(),
                start=int(match.group(2), 16),
                end=int(match.group(3), 16),
                vsize=parse_size(match.group(4)),
                rsdnt=parse_size(match.group(5)),
                permissions=match.group(6),
                shrmod=match.group(7),
                region_detail=match.group(8).strip(),
            )
        )
    return regions


def filter_regions(regions: list[MemRegion]) -> list[MemRegion]:
    """Keep only the regions of the type that holds the key."""
    return [region for region in regions if region.region_type == FILTER_REGION_TYPE]


def parse_size(text: str) -> int:
    """Convert sizes such as ``5616K`` or ``128.0M`` to bytes; 0 if unparsable."""
    match = _SIZE_RE.match(text.strip())
    if match is None:
        return 0
    value = float(match.group(1))
    multiplier = _MULTIPLIERS.get(match.group(2) or "", 1)
    return int(value * multiplier + 0.5)


def sip_disabled_from_output(output: str) -> bool:
    """Interpret the output of ``csrutil status``."""
    text = output.lower()
    if "system integrity protection status: disabled" in text:
        return True
    return "disabled" in text and "debugging" in text


def is_sip_disabled() -> bool:
    """Return True when System Integrity Protection allows debugging."""
    try:
        result = subprocess.run(
            ["csrutil", "status"], stdout=subprocess.PIPE, stderr=subprocess.STDOUT
        )
    except OSError:
        return False
    if result.returncode != 0:
        return False
    return sip_disabled_from_output(result.stdout.decode("utf-8", errors="replace"))