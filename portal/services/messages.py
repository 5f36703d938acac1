"""
Messages carried on the request and deployment streams.

Every payload is one JSON object with a required ``type`` discriminator.
Unknown types are refused when decoding.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from portal.exceptions import MessageDecodeError, ServiceException
from portal.grid import workloads
from portal.services.resource_calculator import SizeClass


class WorkloadKind(Enum):
    VM = "vm"
    K8S = "k8s"

    @property
    def request_stream(self) -> str:
        return f"req.{self.value}"

    @property
    def deploy_stream(self) -> str:
        return f"deploy.{self.value}"

    def network_name(self, name: str) -> str:
        return f"{name}{self.value}Net"


class MessageType(Enum):
    VM_REQUEST = "vm_request"
    K8S_REQUEST = "k8s_request"
    VM_DEPLOYMENT = "vm_deployment"
    K8S_DEPLOYMENT = "k8s_deployment"


@dataclass
class VMIntent:
    name: str
    resources: SizeClass
    public: bool = False

    def to_dict(self) -> dict:
        return {'name': self.name, 'resources': self.resources.value, 'public': self.public}

    @classmethod
    def from_dict(cls, data: dict) -> 'VMIntent':
        return cls(
            name=data['name'],
            resources=SizeClass.parse(data['resources']),
            public=bool(data.get('public', False)),
        )


@dataclass
class WorkerIntent:
    name: str
    resources: SizeClass

    def to_dict(self) -> dict:
        return {'name': self.name, 'resources': self.resources.value}

    @classmethod
    def from_dict(cls, data: dict) -> 'WorkerIntent':
        return cls(name=data['name'], resources=SizeClass.parse(data['resources']))


@dataclass
class K8sIntent:
    master_name: str
    resources: SizeClass
    public: bool = False
    region: Optional[str] = None
    workers: List[WorkerIntent] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.master_name

    def to_dict(self) -> dict:
        return {
            'master_name': self.master_name,
            'resources': self.resources.value,
            'public': self.public,
            'region': self.region,
            'workers': [w.to_dict() for w in self.workers],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'K8sIntent':
        return cls(
            master_name=data['master_name'],
            resources=SizeClass.parse(data['resources']),
            public=bool(data.get('public', False)),
            region=data.get('region') or None,
            workers=[WorkerIntent.from_dict(w) for w in data.get('workers', [])],
        )


Intent = Union[VMIntent, K8sIntent]


@dataclass
class RequestRecord:
    """
    A deployment request as enqueued by the intake.
    The user's ssh key is captured at enqueue time, later profile edits do
    not change what gets deployed.
    """
    kind: WorkloadKind
    user_id: int
    ssh_key: str
    admin_ssh_key: str
    intent: Intent

    @property
    def type(self) -> MessageType:
        return MessageType.VM_REQUEST if self.kind == WorkloadKind.VM else MessageType.K8S_REQUEST

    @property
    def name(self) -> str:
        return self.intent.name

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'user_id': self.user_id,
            'ssh_key': self.ssh_key,
            'admin_ssh_key': self.admin_ssh_key,
            'intent': self.intent.to_dict(),
        }

    @classmethod
    def from_dict(cls, kind: WorkloadKind, data: dict) -> 'RequestRecord':
        intent_cls = VMIntent if kind == WorkloadKind.VM else K8sIntent
        return cls(
            kind=kind,
            user_id=int(data['user_id']),
            ssh_key=data['ssh_key'],
            admin_ssh_key=data.get('admin_ssh_key', ''),
            intent=intent_cls.from_dict(data['intent']),
        )


@dataclass
class DeploymentSpec:
    """A request bound to a node, ready for the batch deployer"""
    kind: WorkloadKind
    request_id: str
    user_id: int
    name: str
    node_id: int
    # quota to give back if the deployment fails
    vms: int
    public_ips: int
    network: workloads.Network
    workload: Union[workloads.Deployment, workloads.K8sCluster]

    @property
    def type(self) -> MessageType:
        return MessageType.VM_DEPLOYMENT if self.kind == WorkloadKind.VM else MessageType.K8S_DEPLOYMENT

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'name': self.name,
            'node_id': self.node_id,
            'vms': self.vms,
            'public_ips': self.public_ips,
            'network': self.network.to_dict(),
            'workload': self.workload.to_dict(),
        }

    @classmethod
    def from_dict(cls, kind: WorkloadKind, data: dict) -> 'DeploymentSpec':
        workload_cls = workloads.Deployment if kind == WorkloadKind.VM else workloads.K8sCluster
        return cls(
            kind=kind,
            request_id=data['request_id'],
            user_id=int(data['user_id']),
            name=data['name'],
            node_id=int(data['node_id']),
            vms=int(data['vms']),
            public_ips=int(data['public_ips']),
            network=workloads.Network.from_dict(data['network']),
            workload=workload_cls.from_dict(data['workload']),
        )


Message = Union[RequestRecord, DeploymentSpec]

_DECODERS = {
    MessageType.VM_REQUEST: lambda data: RequestRecord.from_dict(WorkloadKind.VM, data),
    MessageType.K8S_REQUEST: lambda data: RequestRecord.from_dict(WorkloadKind.K8S, data),
    MessageType.VM_DEPLOYMENT: lambda data: DeploymentSpec.from_dict(WorkloadKind.VM, data),
    MessageType.K8S_DEPLOYMENT: lambda data: DeploymentSpec.from_dict(WorkloadKind.K8S, data),
}


def encode(message: Message) -> str:
    return json.dumps(message.to_dict())


def decode(raw) -> Message:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageDecodeError(f"payload is not valid json: {e}") from e

    if not isinstance(data, dict) or 'type' not in data:
        raise MessageDecodeError("payload has no type")

    try:
        message_type = MessageType(data['type'])
    except ValueError:
        raise MessageDecodeError(f"unknown message type '{data['type']}'")

    try:
        return _DECODERS[message_type](data)
    except (KeyError, TypeError, ValueError, ServiceException) as e:
        raise MessageDecodeError(f"malformed {message_type.value} message: {e!r}") from e
