import logging

import streamlit as st

from inventory import (
    APP_TITLE,
    InventoryError,
    generate_html_report,
    load_inventory,
    read_upload,
    sample_topology,
    usage_frame,
)
from license_calc import (
    LicenseMode,
    LicensePool,
    allocate,
    can_move_vms,
    estimate_gaps,
    move_vm,
)

# --- 1. PAGE CONFIG (MUST BE FIRST) ---
st.set_page_config(
    page_title=APP_TITLE,
    layout="wide",
    page_icon="🪟"
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("licensing_app")

SAMPLE_SOURCE = "Sample Fleet"
DEFAULT_LOGO = ""

if "topology" not in st.session_state:
    st.session_state["topology"] = sample_topology()
    st.session_state["source"] = SAMPLE_SOURCE
st.session_state.setdefault("upload_key", None)
# Bumped on reset so the uploader comes back empty
st.session_state.setdefault("uploader_gen", 0)


# --- SIDEBAR ---
st.sidebar.title("⚙️ Parameters")

st.sidebar.subheader("License Entitlements")
raw_dc = st.sidebar.text_input("Windows Server Datacenter Core Licenses", "0", key="dc_licenses")
raw_std = st.sidebar.text_input("Windows Server Standard Core Licenses", "0", key="std_licenses")
pool = LicensePool.from_raw(standard=raw_std, datacenter=raw_dc)
st.sidebar.caption(f"{pool.datacenter} Datacenter cores | {pool.standard} Standard cores")

st.sidebar.divider()
per_vm = st.sidebar.toggle("Per-VM Mode", False, key="per_vm")
show_vm_cores = st.sidebar.toggle("Show vCPU Counts", True, key="show_vm_cores")
mode = LicenseMode.from_flag(per_vm)

st.sidebar.divider()
include_off = st.sidebar.checkbox("Include Powered Off", True)
cust_name = st.sidebar.text_input("Customer", "Client")
logo_url = st.sidebar.text_input("Logo URL", DEFAULT_LOGO)
if st.sidebar.button("Reset to Sample Fleet", key="reset_fleet"):
    st.session_state["topology"] = sample_topology()
    st.session_state["source"] = SAMPLE_SOURCE
    st.session_state["upload_key"] = None
    st.session_state["uploader_gen"] += 1


# --- MAIN APP ---
st.title(f"🪟 {APP_TITLE}")

upload = st.file_uploader(
    "Upload Inventory (.xlsx RVTools export or .csv)",
    type=["xlsx", "csv"],
    key=f"inventory_upload_{st.session_state['uploader_gen']}",
)
if upload is not None:
    upload_key = (upload.name, upload.size, include_off)
    if upload_key != st.session_state["upload_key"]:
        try:
            topology = load_inventory(read_upload(upload), include_off=include_off)
            st.session_state["topology"] = topology
            st.session_state["source"] = upload.name
            st.session_state["upload_key"] = upload_key
            st.success(f"📂 Loaded **{len(topology)}** hosts from {upload.name}")
        except InventoryError as e:
            st.error(f"⚠️ {e}")
        except Exception:
            logger.exception("Failed to read %s", upload.name)
            st.error("⚠️ Error Processing File")

topology = st.session_state["topology"]

allocation = allocate(topology, pool, mode)
gaps = estimate_gaps(topology, pool, mode)

# Compliance position
st.subheader("Compliance Position")
c1, c2, c3 = st.columns(3)
c1.metric("Datacenter Core Licenses Needed", f"{gaps.datacenter_gap_cores:,}")
c2.metric("Standard Core Licenses Needed", f"{gaps.standard_gap_cores:,}")
c3.metric("Total Cores Used", f"{allocation.total_cores_used:,}")
st.caption(f"Source: {st.session_state['source']} | Mode: {'Per-VM' if per_vm else 'Host Level'}")

# Hosts
st.subheader("Hosts")
cols = st.columns(2)
for i, host in enumerate(topology):
    rec = allocation.per_host[host.id]
    with cols[i % 2]:
        with st.container(border=True):
            st.markdown(f"#### {host.name} ({host.cores} cores)")
            st.caption(
                f"Required Cores: {rec.datacenter_used} Datacenter cores, "
                f"{rec.standard_used} Standard cores"
            )
            for vm in host.vms:
                st.markdown(f"- {vm.id}" + (f" ({vm.cores} cores)" if show_vm_cores else ""))

# Move VM
with st.expander("🔀 Move VM", expanded=False):
    if not can_move_vms(mode):
        st.info("Moving VMs is disabled in Per-VM Mode.")
    elif len(topology) < 2:
        st.info("At least two hosts are needed to move a VM.")
    else:
        vm_options = [(host.id, idx) for host in topology for idx in range(len(host.vms))]
        if vm_options:
            m1, m2, m3 = st.columns(3)
            src = m1.selectbox(
                "VM",
                vm_options,
                format_func=lambda o: f"{topology.get(o[0]).vms[o[1]].id} ({o[0]})",
                key="move_src",
            )
            dest_choices = [h for h in topology.host_ids if h != src[0]]
            dest = m2.selectbox("Destination Host", dest_choices, key="move_dest")
            dest_len = len(topology.get(dest).vms)
            position = m3.number_input("Position", 0, dest_len, dest_len, key="move_pos")
            if st.button("Move", key="move_btn"):
                try:
                    st.session_state["topology"] = move_vm(topology, src[0], src[1], dest, int(position))
                except (KeyError, IndexError):
                    logger.exception("Move failed")
                    st.error("⚠️ Could not move VM")
                else:
                    st.rerun()

# Downloads
st.subheader("Export")
usage = usage_frame(topology, allocation)
st.dataframe(usage, hide_index=True)
d1, d2 = st.columns(2)
html = generate_html_report(topology, pool, mode, allocation, gaps, cust_name, st.session_state["source"], logo_url or None)
d1.download_button("Download Full Report", html, "License_Report.html")
d2.download_button("Download Usage CSV", usage.to_csv(index=False), "License_Usage.csv")
