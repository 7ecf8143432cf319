from pathlib import Path
import sys

import pytest

# Project root on the import path, independent of where pytest runs from
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from license_calc import Host, Topology, VirtualMachine  # noqa: E402


def make_topology(*hosts):
    """hosts: (host_id, cores, [vm_cores, ...]) tuples."""
    built = []
    for host_id, cores, vm_cores in hosts:
        vms = tuple(VirtualMachine(f"{host_id}-vm{i + 1}", c) for i, c in enumerate(vm_cores))
        built.append(Host(id=host_id, name=host_id, cores=cores, vms=vms))
    return Topology(tuple(built))


@pytest.fixture
def two_hosts():
    return make_topology(("h1", 48, [4, 4, 8]), ("h2", 64, [16, 8]))
