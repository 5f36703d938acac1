from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Tuple

from portal.exceptions import InvalidSizeClass


class SizeClass(Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @classmethod
    def parse(cls, value) -> 'SizeClass':
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidSizeClass(value)


@dataclass(frozen=True)
class NodeResources:
    cru: int
    mru: int  # GiB
    sru: int  # GiB
    ips: int


# (cpu, memory GiB, disk GiB)
SIZE_TABLE = MappingProxyType({
    SizeClass.SMALL: (1, 2, 25),
    SizeClass.MEDIUM: (2, 4, 50),
    SizeClass.LARGE: (4, 8, 100),
})

QUOTA_COST = MappingProxyType({
    SizeClass.SMALL: 1,
    SizeClass.MEDIUM: 2,
    SizeClass.LARGE: 3,
})

PUBLIC_QUOTA_COST = 1


class ResourceCalculator:
    @staticmethod
    def resources(size, public: bool) -> NodeResources:
        """Grid resources of one machine of the given size"""
        cru, mru, sru = SIZE_TABLE[SizeClass.parse(size)]
        return NodeResources(cru=cru, mru=mru, sru=sru, ips=1 if public else 0)

    @staticmethod
    def quota_cost(size) -> int:
        return QUOTA_COST[SizeClass.parse(size)]

    @staticmethod
    def intent_quota(intent) -> Tuple[int, int]:
        """
        Quota an intent needs as (vm slots, public ip slots).
        Kubernetes intents pay for the master and every worker, workers are never public.
        """
        vms = ResourceCalculator.quota_cost(intent.resources)
        for worker in getattr(intent, 'workers', []):
            vms += ResourceCalculator.quota_cost(worker.resources)

        ips = PUBLIC_QUOTA_COST if intent.public else 0
        return vms, ips

    @staticmethod
    def intent_resources(intent) -> NodeResources:
        """Total resources a node must have free to host the whole intent"""
        total = ResourceCalculator.resources(intent.resources, intent.public)
        for worker in getattr(intent, 'workers', []):
            w = ResourceCalculator.resources(worker.resources, False)
            total = NodeResources(
                cru=total.cru + w.cru,
                mru=total.mru + w.mru,
                sru=total.sru + w.sru,
                ips=total.ips,
            )
        return total

    @staticmethod
    def gib_to_bytes(gib: int) -> int:
        return gib * 1024 * 1024 * 1024
