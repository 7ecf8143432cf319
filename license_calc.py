"""Windows Server core license allocation and compliance gaps.

Pure functions over a caller-owned snapshot of the fleet. Nothing here keeps
state between calls or touches Streamlit.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?[0-9]+)")


# --- UTILS ---
def coerce_count(raw):
    """Parses a raw count like a number field would: leading integer or 0, never negative."""
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return max(raw, 0)
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return 0
        return max(int(raw), 0)
    match = _LEADING_INT.match(str(raw))
    if not match:
        return 0
    return max(int(match.group(1)), 0)


# --- MODEL ---
class LicenseMode(Enum):
    HOST_LEVEL = "host"
    PER_VM = "per_vm"

    @classmethod
    def from_flag(cls, per_vm):
        return cls.PER_VM if per_vm else cls.HOST_LEVEL


@dataclass(frozen=True)
class VirtualMachine:
    id: str
    cores: int


@dataclass(frozen=True)
class Host:
    id: str
    name: str
    cores: int
    vms: tuple = ()

    @property
    def vm_cores(self):
        return sum(vm.cores for vm in self.vms)


@dataclass(frozen=True)
class Topology:
    """Hosts in allocation priority order."""
    hosts: tuple = ()

    def __post_init__(self):
        seen = set()
        for host in self.hosts:
            if host.id in seen:
                raise ValueError(f"Duplicate host id: {host.id}")
            seen.add(host.id)

    @classmethod
    def from_mapping(cls, mapping):
        """Builds a topology from {host_id: {"name", "cores", "vms": [{"id", "cores"}]}}."""
        hosts = []
        for host_id, entry in mapping.items():
            vms = tuple(
                VirtualMachine(str(vm["id"]), coerce_count(vm.get("cores")))
                for vm in entry.get("vms", [])
            )
            hosts.append(Host(
                id=str(host_id),
                name=str(entry.get("name", host_id)),
                cores=coerce_count(entry.get("cores")),
                vms=vms,
            ))
        return cls(tuple(hosts))

    @property
    def host_ids(self):
        return [h.id for h in self.hosts]

    def get(self, host_id):
        for host in self.hosts:
            if host.id == host_id:
                return host
        raise KeyError(host_id)

    def __iter__(self):
        return iter(self.hosts)

    def __len__(self):
        return len(self.hosts)


@dataclass(frozen=True)
class LicensePool:
    standard: int = 0
    datacenter: int = 0

    @classmethod
    def from_raw(cls, standard, datacenter):
        return cls(standard=coerce_count(standard), datacenter=coerce_count(datacenter))


@dataclass(frozen=True)
class AllocationRecord:
    datacenter_used: int = 0
    standard_used: int = 0


@dataclass
class AllocationResult:
    per_host: dict = field(default_factory=dict)
    total_cores_used: int = 0


@dataclass(frozen=True)
class ComplianceGap:
    datacenter_gap_cores: int = 0
    standard_gap_cores: int = 0


# --- ALLOCATOR ---
def allocate(topology, pool, mode):
    """Consumes the license pools against the fleet in host order.

    Host-level mode licenses each host's physical cores, Datacenter first,
    with whatever Datacenter cannot cover reported as Standard. Per-VM mode
    covers each VM from the Standard pool all-or-nothing and never reads host
    capacity or the Datacenter pool. In both modes ``total_cores_used`` is the
    sum of host physical cores.
    """
    remaining_std = pool.standard
    remaining_dc = pool.datacenter
    total_cores_used = 0
    per_host = {}

    for host in topology:
        total_cores_used += host.cores

        if mode is LicenseMode.PER_VM:
            std_used = 0
            for vm in host.vms:
                if remaining_std >= vm.cores:
                    remaining_std -= vm.cores
                    std_used += vm.cores
                else:
                    logger.debug("Skipped %s on %s: needs %d, %d left", vm.id, host.id, vm.cores, remaining_std)
            per_host[host.id] = AllocationRecord(datacenter_used=0, standard_used=std_used)
            continue

        need = host.cores
        if remaining_dc >= need:
            per_host[host.id] = AllocationRecord(datacenter_used=need, standard_used=0)
            remaining_dc -= need
        else:
            dc_used = remaining_dc
            uncovered = max(need - dc_used, 0)
            per_host[host.id] = AllocationRecord(datacenter_used=dc_used, standard_used=uncovered)
            remaining_dc = 0
            # Unclamped: a negative balance is the outstanding Standard deficit.
            remaining_std -= uncovered

    logger.debug(
        "Allocated %s over %d hosts: %d cores, std left %d, dc left %d",
        mode.name, len(topology), total_cores_used, remaining_std, remaining_dc,
    )
    return AllocationResult(per_host=per_host, total_cores_used=total_cores_used)


# --- GAP ESTIMATOR ---
def estimate_gaps(topology, pool, mode):
    """Additional units of each kind needed to cover total demand.

    Derived from the topology, not from ``allocate``. In per-VM mode the
    result assumes the whole Standard pool is usable, so it can report no gap
    while ``allocate`` still leaves VMs uncovered.
    """
    if mode is LicenseMode.PER_VM:
        demand = sum(host.vm_cores for host in topology)
        gap = ComplianceGap(
            datacenter_gap_cores=0,
            standard_gap_cores=max(demand - pool.standard, 0),
        )
    else:
        demand = sum(host.cores for host in topology)
        after_dc = max(demand - pool.datacenter, 0)
        gap = ComplianceGap(
            datacenter_gap_cores=after_dc,
            standard_gap_cores=max(after_dc - pool.standard, 0),
        )
    logger.debug("Gap %s: demand %d -> %s", mode.name, demand, gap)
    return gap


# --- TOPOLOGY MUTATION ---
def can_move_vms(mode):
    """VMs may only be relocated while licensing per host."""
    return mode is LicenseMode.HOST_LEVEL


def move_vm(topology, source_host_id, source_index, dest_host_id, dest_index):
    """Returns a new topology with one VM moved to another host."""
    if source_host_id == dest_host_id:
        return topology

    source = topology.get(source_host_id)
    dest = topology.get(dest_host_id)

    source_vms = list(source.vms)
    vm = source_vms.pop(source_index)
    dest_vms = list(dest.vms)
    dest_vms.insert(dest_index, vm)

    hosts = []
    for host in topology:
        if host.id == source_host_id:
            host = Host(host.id, host.name, host.cores, tuple(source_vms))
        elif host.id == dest_host_id:
            host = Host(host.id, host.name, host.cores, tuple(dest_vms))
        hosts.append(host)

    logger.info("Moved %s from %s to %s[%d]", vm.id, source_host_id, dest_host_id, dest_index)
    return Topology(tuple(hosts))
