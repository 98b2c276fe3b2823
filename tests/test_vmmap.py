import subprocess
from unittest import mock

import pytest

from chatlogkit.model import ChatlogError
from chatlogkit.vmmap import (
    filter_regions,
    get_vmmap,
    is_sip_disabled,
    load_vmmap,
    parse_size,
    sip_disabled_from_output,
)

NANO_LINE = (
    "MALLOC_NANO                 600000000000-600008000000    "
    "[128.0M  1520K  1520K     0K] rw-/rwx SM=PRV          DefaultMallocZone_0x100000000"
)
DATA_LINE = (
    "__DATA                      100000000-100004000    "
    "[   16K    16K    16K     0K] rw-/rw- SM=COW          /Applications/WeChat.app/WeChat"
)
SAMPLE = "\n".join(
    [
        "Process:         WeChat [123]",
        DATA_LINE,
        "==== Writable regions for process 123",
        DATA_LINE,  # stands where the column header line is, so it is skipped
        NANO_LINE,
        "",
        DATA_LINE,
        "",
    ]
)


def test_load_vmmap_parses_regions_after_header():
    regions = load_vmmap(SAMPLE)
    assert [r.region_type for r in regions] == ["MALLOC_NANO", "__DATA"]
    nano = regions[0]
    assert nano.start == int("600000000000", 16)
    assert nano.end == int("600008000000", 16)
    assert nano.vsize == parse_size("128.0M")
    assert nano.rsdnt == parse_size("1520K")
    assert nano.permissions == "rw-/rwx"
    assert nano.shrmod == "SM=PRV"
    assert nano.region_detail == "DefaultMallocZone_0x100000000"


def test_load_vmmap_without_header_is_empty():
    assert load_vmmap(DATA_LINE + "\n" + NANO_LINE) == []


def test_load_vmmap_handles_crlf():
    regions = load_vmmap(SAMPLE.replace("\n", "\r\n"))
    assert regions[0].region_detail == "DefaultMallocZone_0x100000000"


def test_filter_regions_keeps_malloc_nano():
    regions = filter_regions(load_vmmap(SAMPLE))
    assert len(regions) == 1
    assert regions[0].region_type == "MALLOC_NANO"


def test_parse_size_units():
    assert parse_size("1K") == 1024
    assert parse_size("2B") == 2
    assert parse_size("2K") == 2 * parse_size("1K")
    assert parse_size("1.5K") == parse_size("1536B")
    assert parse_size("1KB") == parse_size("1K")
    assert parse_size("1G") == 1024 * parse_size("1M")


def test_parse_size_rejects_garbage():
    assert parse_size("") == 0
    assert parse_size("abc") == 0
    assert parse_size("1X") == 0


def test_parse_size_unknown_unit_uses_bytes():
    assert parse_size("1KM") == 1


def test_sip_output_interpretation():
    assert sip_disabled_from_output("System Integrity Protection status: disabled.")
    assert not sip_disabled_from_output("System Integrity Protection status: enabled.")
    assert sip_disabled_from_output(
        "System Integrity Protection status: unknown (Custom Configuration).\n"
        "Debugging Restrictions: disabled"
    )


def test_is_sip_disabled_runs_csrutil():
    result = subprocess.CompletedProcess(
        ["csrutil"], 0, stdout=b"System Integrity Protection status: disabled.\n"
    )
    with mock.patch("subprocess.run", return_value=result) as run:
        assert is_sip_disabled() is True
    assert run.call_args.args[0] == ["csrutil", "status"]


def test_is_sip_disabled_false_when_command_missing():
    with mock.patch("subprocess.run", side_effect=OSError("missing")):
        assert is_sip_disabled() is False


def test_get_vmmap_parses_command_output():
    result = subprocess.CompletedProcess(["vmmap"], 0, stdout=SAMPLE.encode())
    with mock.patch("subprocess.run", return_value=result) as run:
        regions = get_vmmap(123)
    assert run.call_args.args[0] == ["vmmap", "-wide", "123"]
    assert len(regions) == 2


def test_get_vmmap_failure_raises():
    result = subprocess.CompletedProcess(["vmmap"], 1, stdout=b"denied")
    with mock.patch("subprocess.run", return_value=result):
        with pytest.raises(ChatlogError):
            get_vmmap(123)