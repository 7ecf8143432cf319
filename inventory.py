"""Fleet inventory: sample data, spreadsheet import, usage table and report."""
import logging
from datetime import datetime

import pandas as pd

from license_calc import Host, LicenseMode, Topology, VirtualMachine, coerce_count

logger = logging.getLogger(__name__)

APP_TITLE = "Windows Server License Calculator"


class InventoryError(ValueError):
    """Raised when an uploaded file is not a recognised inventory."""


SAMPLE_HOSTS = {
    "Host1": {
        "name": "Host1",
        "cores": 48,
        "vms": [
            {"id": "vm1", "cores": 4},
            {"id": "vm2", "cores": 4},
            {"id": "vm3", "cores": 4},
            {"id": "vm4", "cores": 4},
            {"id": "vm5", "cores": 4},
            {"id": "vm6", "cores": 2},
            {"id": "vm7", "cores": 8},
            {"id": "vm8", "cores": 2},
            {"id": "vm9", "cores": 4},
            {"id": "vm10", "cores": 8},
            {"id": "vm11", "cores": 16},
        ],
    },
    "Host2": {
        "name": "Host2",
        "cores": 64,
        "vms": [
            {"id": "vm12", "cores": 8},
            {"id": "vm13", "cores": 4},
            {"id": "vm14", "cores": 8},
            {"id": "vm15", "cores": 8},
            {"id": "vm16", "cores": 8},
            {"id": "vm17", "cores": 4},
            {"id": "vm18", "cores": 4},
            {"id": "vm19", "cores": 8},
            {"id": "vm20", "cores": 8},
            {"id": "vm21", "cores": 4},
            {"id": "vm22", "cores": 4},
        ],
    },
}


def sample_topology():
    return Topology.from_mapping(SAMPLE_HOSTS)


# --- UTILS ---
def to_counts(series):
    """Converts a series to non-negative integer core counts, handling commas and strings."""
    if series is None:
        return pd.Series(dtype=int)
    return series.fillna('').astype(str).str.replace(',', '').map(coerce_count)


def to_names(series):
    """Stripped string labels; blank cells become ''."""
    return series.fillna('').astype(str).str.strip()


def clean_sheet_names(sheets):
    return {k.strip(): v for k, v in sheets.items()}


def promote_header(df, keywords):
    """Scans for a header row containing specific keywords."""
    df = df.reset_index(drop=True)
    # Scan first 20 rows
    for i in range(min(20, len(df))):
        row_str = " ".join(df.iloc[i].fillna('').astype(str).values).lower()
        if all(k.lower() in row_str for k in keywords):
            df.columns = df.iloc[i].fillna('').astype(str).str.strip()
            return df[i+1:].reset_index(drop=True)
    # Fallback
    df.columns = df.iloc[0].fillna('').astype(str).str.strip()
    return df[1:].reset_index(drop=True)


def get_col(df, *keywords, exact_only=False):
    """Finds a column by exact name first, then by substring (case-insensitive)."""
    if df is None or df.empty:
        return None
    for keyword in keywords:
        exact = next((c for c in df.columns if c.lower() == keyword.lower()), None)
        if exact:
            return exact
    if exact_only:
        return None
    for keyword in keywords:
        partial = next((c for c in df.columns if keyword.lower() in c.lower()), None)
        if partial:
            return partial
    return None


def read_upload(upload):
    """Reads an uploaded .xlsx or .csv into raw, headerless sheets."""
    name = getattr(upload, "name", str(upload))
    if name.lower().endswith(".csv"):
        return {"Inventory": pd.read_csv(upload, header=None, dtype=str)}
    sheets = pd.read_excel(upload, sheet_name=None, header=None, engine='openpyxl')
    return clean_sheet_names(sheets)


# --- LOADERS ---
def _build_topology(host_cores, host_vms):
    hosts = []
    for host_id, vms in host_vms.items():
        cores = host_cores.get(host_id)
        if cores is None:
            cores = sum(vm.cores for vm in vms)
            logger.warning("No core count for %s, using VM total of %d", host_id, cores)
        hosts.append(Host(id=host_id, name=host_id, cores=cores, vms=tuple(vms)))
    return Topology(tuple(hosts))


def _load_rvtools(sheets, include_off):
    df_vm = promote_header(sheets['vInfo'], ["VM", "Powerstate"])
    vm_col = get_col(df_vm, 'VM')
    cpu_col = get_col(df_vm, 'CPUs')
    host_col = get_col(df_vm, 'Host')
    if not (vm_col and cpu_col and host_col):
        raise InventoryError("vInfo needs VM, CPUs and Host columns")

    if not include_off:
        p_col = get_col(df_vm, 'Powerstate')
        if p_col:
            df_vm = df_vm[df_vm[p_col].astype(str).str.contains('poweredOn', case=False, na=False)]

    host_cores = {}
    host_vms = {}
    if 'vHost' in sheets:
        df_h = promote_header(sheets['vHost'], ["Host", "CPU"])
        name_col = get_col(df_h, 'Host')
        total_col = get_col(df_h, '# Cores')
        cpu_col_h = get_col(df_h, '# CPU')
        per_col = get_col(df_h, 'Cores per CPU')
        if name_col and (total_col or (cpu_col_h and per_col)):
            if total_col:
                cores = to_counts(df_h[total_col])
            else:
                cores = to_counts(df_h[cpu_col_h]) * to_counts(df_h[per_col])
            for name, count in zip(to_names(df_h[name_col]), cores):
                if name:
                    host_cores[name] = int(count)
                    host_vms.setdefault(name, [])

    _collect_vms(df_vm, vm_col, cpu_col, host_col, host_vms)
    return _build_topology(host_cores, host_vms)


def _load_flat(df):
    vm_col = get_col(df, 'VM', 'VM Name')
    host_col = get_col(df, 'Host', 'Host Name')
    # A bare "Cores" header must not fall through to a substring hit on "Host Cores"
    cpu_col = get_col(df, 'vCPU', 'VM Cores', 'CPUs', 'Cores', exact_only=True) or get_col(df, 'vCPU', 'VM Cores', 'CPUs')
    cores_col = get_col(df, 'Host Cores', 'Physical Cores')
    if not (vm_col and host_col and cpu_col):
        raise InventoryError("Inventory needs Host, VM and vCPU columns")

    host_cores = {}
    host_vms = {}
    if cores_col:
        for name, count in zip(to_names(df[host_col]), to_counts(df[cores_col])):
            if name:
                host_cores.setdefault(name, int(count))
    _collect_vms(df, vm_col, cpu_col, host_col, host_vms)
    return _build_topology(host_cores, host_vms)


def _collect_vms(df, vm_col, cpu_col, host_col, host_vms):
    cores = to_counts(df[cpu_col])
    for vm_name, host_name, count in zip(to_names(df[vm_col]), to_names(df[host_col]), cores):
        if not vm_name:
            continue
        if not host_name:
            logger.warning("Skipping %s: no host", vm_name)
            continue
        host_vms.setdefault(host_name, []).append(VirtualMachine(vm_name, int(count)))


def load_inventory(sheets, include_off=True):
    """Builds a topology from RVTools exports or a flat Host/VM/vCPU sheet."""
    sheets = clean_sheet_names(sheets)
    if 'vInfo' in sheets:
        src_type = "RVTools"
        topology = _load_rvtools(sheets, include_off)
    else:
        src_type = "Flat"
        topology = None
        for name, raw in sheets.items():
            if raw is None or raw.empty:
                continue
            df = promote_header(raw, ["Host", "VM"])
            if get_col(df, 'Host') and get_col(df, 'VM'):
                topology = _load_flat(df)
                break
        if topology is None:
            raise InventoryError("Invalid File Format")

    logger.info("Loaded %s inventory: %d hosts, %d VMs", src_type, len(topology), sum(len(h.vms) for h in topology))
    return topology


# --- OUTPUT ---
def usage_frame(topology, allocation):
    rows = []
    for host in topology:
        rec = allocation.per_host[host.id]
        rows.append({
            'Host': host.name,
            'Physical Cores': host.cores,
            'VMs': len(host.vms),
            'VM Cores': host.vm_cores,
            'Datacenter Used': rec.datacenter_used,
            'Standard Used': rec.standard_used,
        })
    return pd.DataFrame(rows, columns=['Host', 'Physical Cores', 'VMs', 'VM Cores', 'Datacenter Used', 'Standard Used'])


def generate_html_report(topology, pool, mode, allocation, gaps, customer_name, source_name, logo_url=None):
    now = datetime.now().strftime("%Y-%m-%d")
    mode_label = "Per-VM" if mode is LicenseMode.PER_VM else "Host Level"
    compliant = gaps.datacenter_gap_cores == 0 and gaps.standard_gap_cores == 0
    status_color = "#28a745" if compliant else "#d9534f"
    status_text = "Compliant" if compliant else "Shortfall"
    logo_html = f'<div class="header-logo"><img src="{logo_url}"></div>' if logo_url else ""
    table_html = usage_frame(topology, allocation).to_html(index=False, border=0)

    html = f"""
    <html>
    <head>
        <title>License Report - {customer_name}</title>
        <style>
            body {{ font-family: "Segoe UI", sans-serif; max-width: 1000px; margin: auto; padding: 40px; color: #333; }}
            .header-container {{ border-bottom: 3px solid #004B87; padding-bottom: 20px; margin-bottom: 30px; display: flex; justify-content: space-between; align-items: center; }}
            .header-text h1 {{ margin: 0; font-size: 24px; color: #000; }}
            .header-logo img {{ max-height: 60px; }}
            h2 {{ color: #004B87; border-left: 5px solid #004B87; padding-left: 10px; margin-top: 40px; }}
            .card {{ background: #f9f9f9; padding: 20px; border-radius: 4px; border: 1px solid #eee; margin-bottom: 20px; }}
            .grid {{ display: grid; grid-template-columns: 1fr 1fr; gap: 20px; }}
            .metric {{ font-size: 1.6em; font-weight: bold; color: #2c3e50; margin: 5px 0; }}
            .section-label {{ font-weight: bold; color: #004B87; text-transform: uppercase; font-size: 0.8em; display:block; margin-bottom: 5px; }}
            .status {{ font-weight: bold; color: {status_color}; }}
            table {{ width: 100%; border-collapse: collapse; }}
            td, th {{ border-bottom: 1px solid #ddd; padding: 8px; text-align: left; }}
            .footer {{ margin-top:50px; text-align:center; color:#999; font-size:0.8em; }}
        </style>
    </head>
    <body>
        <div class="header-container">
            <div class="header-text">
                <h1>{APP_TITLE}</h1>
                <div style="color:#666; font-size:14px;">Prepared for <strong>{customer_name}</strong> | {now}</div>
                <div style="color:#666; font-size:12px; margin-top:5px;">Licensing Mode: {mode_label}</div>
            </div>
            {logo_html}
        </div>

        <h2>1. License Entitlements</h2>
        <div class="grid">
            <div class="card">
                <div class="section-label">Datacenter Core Licenses</div>
                <div class="metric">{pool.datacenter:,} Cores</div>
            </div>
            <div class="card">
                <div class="section-label">Standard Core Licenses</div>
                <div class="metric">{pool.standard:,} Cores</div>
            </div>
        </div>

        <h2>2. Compliance Position</h2>
        <div class="card">
            <div class="status">{status_text}</div>
            <div class="grid">
                <div>
                    <div class="section-label">Datacenter Core Licenses Needed</div>
                    <div class="metric">{gaps.datacenter_gap_cores:,}</div>
                </div>
                <div>
                    <div class="section-label">Standard Core Licenses Needed</div>
                    <div class="metric">{gaps.standard_gap_cores:,}</div>
                </div>
            </div>
            <div style="margin-top:10px;">Total Cores Used: <strong>{allocation.total_cores_used:,}</strong></div>
        </div>

        <h2>3. Host Allocation</h2>
        <div class="card">
            {table_html}
        </div>

        <div class="footer">Generated by {APP_TITLE} | Source: {source_name}</div>
    </body>
    </html>
    """
    return html
