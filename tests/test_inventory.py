"""Inventory import, usage table and report."""
import pandas as pd
import pytest

from inventory import (
    InventoryError,
    generate_html_report,
    load_inventory,
    promote_header,
    read_upload,
    sample_topology,
    to_counts,
    usage_frame,
)
from license_calc import LicenseMode, LicensePool, allocate, estimate_gaps


def rvtools_sheets(with_hosts=True):
    sheets = {
        "vInfo": pd.DataFrame([
            ["VM", "Powerstate", "CPUs", "Host", "Cluster"],
            ["web01", "poweredOn", "4", "esx1", "Prod"],
            ["db01", "poweredOff", "8", "esx1", "Prod"],
            ["app01", "poweredOn", "2", "esx2", "Prod"],
        ]),
    }
    if with_hosts:
        sheets["vHost"] = pd.DataFrame([
            ["Host", "# CPU", "Cores per CPU", "# Cores"],
            ["esx1", "2", "16", "32"],
            ["esx2", "2", "8", "16"],
            ["esx3", "1", "8", "8"],
        ])
    return sheets


class TestSample:
    def test_sample_fleet(self):
        topo = sample_topology()
        assert topo.host_ids == ["Host1", "Host2"]
        assert topo.get("Host1").cores == 48
        assert len(topo.get("Host1").vms) == 11
        assert topo.get("Host2").vms[0].id == "vm12"
        assert sum(h.vm_cores for h in topo) == 128


class TestUtils:
    def test_to_counts(self):
        series = pd.Series(["1,024", "4.0", None, "x", "-2"])
        assert list(to_counts(series)) == [1024, 4, 0, 0, 0]

    def test_promote_header_skips_title_rows(self):
        raw = pd.DataFrame([
            ["Fleet export", None, None],
            ["Host", "VM", "vCPU"],
            ["h1", "a", "2"],
        ])
        df = promote_header(raw, ["Host", "VM"])
        assert list(df.columns) == ["Host", "VM", "vCPU"]
        assert len(df) == 1


class TestRvtools:
    def test_hosts_from_vhost(self):
        topo = load_inventory(rvtools_sheets())
        assert topo.host_ids == ["esx1", "esx2", "esx3"]
        assert topo.get("esx1").cores == 32
        assert [vm.id for vm in topo.get("esx1").vms] == ["web01", "db01"]
        assert topo.get("esx3").vms == ()

    def test_exclude_powered_off(self):
        topo = load_inventory(rvtools_sheets(), include_off=False)
        assert [vm.id for vm in topo.get("esx1").vms] == ["web01"]

    def test_host_cores_fall_back_to_vm_total(self):
        topo = load_inventory(rvtools_sheets(with_hosts=False))
        assert topo.host_ids == ["esx1", "esx2"]
        assert topo.get("esx1").cores == 12

    def test_blank_host_and_vm_cells(self):
        sheets = rvtools_sheets()
        sheets["vInfo"] = pd.concat([
            sheets["vInfo"],
            pd.DataFrame([
                ["template01", "poweredOff", "2", None, "Prod"],
                [None, None, None, None, None],
            ]),
        ], ignore_index=True)
        sheets["vHost"] = pd.concat([
            sheets["vHost"],
            pd.DataFrame([[None, None, None, None]]),
        ], ignore_index=True)
        topo = load_inventory(sheets)
        assert topo.host_ids == ["esx1", "esx2", "esx3"]
        assert [vm.id for vm in topo.get("esx1").vms] == ["web01", "db01"]

    def test_cores_from_sockets(self):
        sheets = rvtools_sheets()
        sheets["vHost"] = pd.DataFrame([
            ["Host", "# CPU", "Cores per CPU"],
            ["esx1", "2", "12"],
        ])
        topo = load_inventory(sheets)
        assert topo.get("esx1").cores == 24
        assert topo.get("esx2").cores == 2


class TestFlat:
    def test_flat_sheet(self):
        raw = pd.DataFrame([
            ["Host", "Host Cores", "VM", "vCPU"],
            ["h1", "32", "a", "4"],
            ["h1", "32", "b", "8"],
            ["h2", "16", "c", "2"],
            ["h2", "16", "d", "lots"],
        ])
        topo = load_inventory({"Inventory": raw})
        assert topo.host_ids == ["h1", "h2"]
        assert topo.get("h1").cores == 32
        assert [(vm.id, vm.cores) for vm in topo.get("h2").vms] == [("c", 2), ("d", 0)]

    def test_csv_upload(self, tmp_path):
        path = tmp_path / "fleet.csv"
        path.write_text("Host,Host Cores,VM,vCPU\nh1,24,a,4\nh2,8,b,2\n,,orphan,2\n")
        topo = load_inventory(read_upload(path))
        assert topo.host_ids == ["h1", "h2"]
        assert topo.get("h2").vms[0].cores == 2

    def test_blank_host_and_vm_cells(self):
        raw = pd.DataFrame([
            ["Host", "Host Cores", "VM", "vCPU"],
            ["h1", "32", "a", "4"],
            [None, None, "orphan", "2"],
            ["h1", "32", None, None],
            [None, None, None, None],
        ])
        topo = load_inventory({"Inventory": raw})
        assert topo.host_ids == ["h1"]
        assert [vm.id for vm in topo.get("h1").vms] == ["a"]

    def test_bare_cores_header_is_vm_cores(self):
        raw = pd.DataFrame([
            ["Host", "Host Cores", "VM", "Cores"],
            ["h1", "32", "a", "4"],
            ["h1", "32", "b", "6"],
        ])
        topo = load_inventory({"Inventory": raw})
        assert topo.get("h1").cores == 32
        assert [vm.cores for vm in topo.get("h1").vms] == [4, 6]

    def test_unrecognised_file(self):
        raw = pd.DataFrame([["a", "b"], ["1", "2"]])
        with pytest.raises(InventoryError):
            load_inventory({"Sheet1": raw})

    def test_missing_vcpu_column(self):
        raw = pd.DataFrame([["Host", "VM"], ["h1", "a"]])
        with pytest.raises(InventoryError):
            load_inventory({"Sheet1": raw})


class TestOutput:
    def test_usage_frame(self):
        topo = sample_topology()
        allocation = allocate(topo, LicensePool(standard=0, datacenter=100), LicenseMode.HOST_LEVEL)
        df = usage_frame(topo, allocation)
        assert list(df["Host"]) == ["Host1", "Host2"]
        assert list(df["Datacenter Used"]) == [48, 52]
        assert list(df["Standard Used"]) == [0, 12]
        assert list(df["VM Cores"]) == [60, 68]

    def test_html_report(self):
        topo = sample_topology()
        pool = LicensePool(standard=0, datacenter=100)
        mode = LicenseMode.HOST_LEVEL
        html = generate_html_report(
            topo, pool, mode, allocate(topo, pool, mode), estimate_gaps(topo, pool, mode), "Contoso", "Sample Fleet"
        )
        assert "Contoso" in html
        assert "Shortfall" in html
        assert "Host2" in html
        assert "Host Level" in html

    def test_html_report_logo(self):
        topo = sample_topology()
        pool = LicensePool()
        mode = LicenseMode.PER_VM
        allocation = allocate(topo, pool, mode)
        gaps = estimate_gaps(topo, pool, mode)
        with_logo = generate_html_report(topo, pool, mode, allocation, gaps, "Contoso", "x", "https://example.com/logo.png")
        without = generate_html_report(topo, pool, mode, allocation, gaps, "Contoso", "x")
        assert '<img src="https://example.com/logo.png">' in with_logo
        assert "<img" not in without
