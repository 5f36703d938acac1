"""
Workload descriptors sent to the grid gateway.

All descriptors are plain dataclasses that round-trip through JSON, so they
can travel on the deployment streams between the request consumer and the
batch deployer.
"""
import secrets
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

NETWORK_IP_RANGE = "10.20.0.0/16"

VM_FLIST = "https://hub.grid.tf/tf-official-vms/ubuntu-22.04.flist"
K8S_FLIST = "https://hub.grid.tf/tf-official-apps/threefoldtech-k3s-latest.flist"
VM_ENTRYPOINT = "/init.sh"


def random_mycelium_key() -> str:
    return secrets.token_hex(32)


def random_mycelium_ip_seed() -> str:
    return secrets.token_hex(6)


@dataclass
class Network:
    name: str
    nodes: List[int]
    ip_range: str = NETWORK_IP_RANGE
    add_wg_access: bool = False
    mycelium_keys: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Network':
        return cls(
            name=data['name'],
            nodes=[int(n) for n in data['nodes']],
            ip_range=data.get('ip_range', NETWORK_IP_RANGE),
            add_wg_access=bool(data.get('add_wg_access', False)),
            # json turns int keys into strings
            mycelium_keys={int(k): v for k, v in data.get('mycelium_keys', {}).items()},
        )


@dataclass
class Disk:
    name: str
    size_gb: int


@dataclass
class Mount:
    disk_name: str
    mount_point: str


@dataclass
class VM:
    name: str
    node_id: int
    network_name: str
    cpu: int
    memory_mb: int
    flist: str = VM_FLIST
    entrypoint: str = VM_ENTRYPOINT
    public_ip: bool = False
    planetary: bool = True
    mycelium_ip_seed: str = ''
    mounts: List[Mount] = field(default_factory=list)
    env_vars: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'VM':
        data = dict(data)
        data['mounts'] = [Mount(**m) for m in data.get('mounts', [])]
        return cls(**data)


@dataclass
class Deployment:
    """A single-node deployment holding the vm and its disks"""
    name: str
    node_id: int
    network_name: str
    solution_type: str
    disks: List[Disk] = field(default_factory=list)
    vms: List[VM] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Deployment':
        return cls(
            name=data['name'],
            node_id=int(data['node_id']),
            network_name=data['network_name'],
            solution_type=data['solution_type'],
            disks=[Disk(**d) for d in data.get('disks', [])],
            vms=[VM.from_dict(v) for v in data.get('vms', [])],
        )


@dataclass
class K8sNode:
    name: str
    node_id: int
    network_name: str
    cpu: int
    memory_mb: int
    disk_size_gb: int
    flist: str = K8S_FLIST
    public_ip: bool = False
    planetary: bool = True
    mycelium_ip_seed: str = ''


@dataclass
class K8sCluster:
    master: K8sNode
    network_name: str
    token: str
    ssh_key: str
    solution_type: str
    workers: List[K8sNode] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.master.name

    @property
    def node_id(self) -> int:
        return self.master.node_id

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'K8sCluster':
        return cls(
            master=K8sNode(**data['master']),
            network_name=data['network_name'],
            token=data['token'],
            ssh_key=data['ssh_key'],
            solution_type=data['solution_type'],
            workers=[K8sNode(**w) for w in data.get('workers', [])],
        )


@dataclass
class Node:
    node_id: int
    farm_id: Optional[int] = None


@dataclass
class NodeFilter:
    """Query parameters for the grid proxy node listing"""
    free_mru: int  # bytes
    free_sru: int  # bytes
    free_ips: int
    farm_ids: List[int]
    status: str = "up"
    ipv6: bool = True
    region: Optional[str] = None
    size: int = 1

    def to_params(self) -> dict:
        params = {
            'status': self.status,
            'free_mru': self.free_mru,
            'free_sru': self.free_sru,
            'free_ips': self.free_ips,
            'ipv6': 'true' if self.ipv6 else 'false',
            'farm_ids': ','.join(str(f) for f in sorted(self.farm_ids)),
            'size': self.size,
        }
        if self.region:
            params['region'] = self.region
        return params


@dataclass
class LoadedNetwork:
    name: str
    node_deployment_id: Dict[int, int]


@dataclass
class LoadedMachine:
    name: str
    public_ip: Optional[str] = None
    planetary_ip: Optional[str] = None
    mycelium_ip: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'LoadedMachine':
        return cls(
            name=data.get('name', ''),
            public_ip=data.get('public_ip') or None,
            planetary_ip=data.get('planetary_ip') or None,
            mycelium_ip=data.get('mycelium_ip') or None,
        )


@dataclass
class LoadedDeployment:
    name: str
    node_id: int
    contract_id: int
    vms: List[LoadedMachine]


@dataclass
class LoadedCluster:
    name: str
    node_id: int
    contract_id: int
    master: LoadedMachine
    workers: List[LoadedMachine]
