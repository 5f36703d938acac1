import logging
import threading
from typing import Dict, Iterable, List, Optional

import requests

from portal.exceptions import ContractNotExists, GridError, GridNotFound
from portal.grid.workloads import (
    Deployment,
    K8sCluster,
    LoadedCluster,
    LoadedDeployment,
    LoadedMachine,
    LoadedNetwork,
    Network,
    Node,
    NodeFilter,
)

logger = logging.getLogger(__name__)


class GridState:
    """
    Reads authoritative workload state from the grid.

    The network names and node contracts seen so far are kept as a local
    cache only; deployment outcomes always come from a fresh grid read.
    """

    def __init__(self, client: 'GridClient'):
        self._client = client
        self._lock = threading.Lock()
        self.networks = set()
        self.node_deployments: Dict[int, List[int]] = {}

    def _remember(self, node_id: int, contract_id: int) -> None:
        with self._lock:
            contracts = self.node_deployments.setdefault(node_id, [])
            if contract_id not in contracts:
                contracts.append(contract_id)

    def load_network(self, name: str) -> LoadedNetwork:
        data = self._client.gateway('GET', f'/networks/{name}')
        node_deployment_id = {int(k): int(v) for k, v in data.get('node_deployment_id', {}).items()}

        with self._lock:
            self.networks.add(name)
        for node_id, contract_id in node_deployment_id.items():
            self._remember(node_id, contract_id)

        return LoadedNetwork(name=name, node_deployment_id=node_deployment_id)

    def load_deployment(self, node_id: int, name: str) -> LoadedDeployment:
        data = self._client.gateway('GET', f'/nodes/{node_id}/deployments/{name}')
        contract_id = int(data['contract_id'])
        self._remember(node_id, contract_id)

        return LoadedDeployment(
            name=name,
            node_id=node_id,
            contract_id=contract_id,
            vms=[LoadedMachine.from_dict(vm) for vm in data.get('vms', [])],
        )

    def load_k8s(self, node_id: int, name: str) -> LoadedCluster:
        data = self._client.gateway('GET', f'/nodes/{node_id}/k8s/{name}')
        contract_id = int(data['contract_id'])
        self._remember(node_id, contract_id)

        return LoadedCluster(
            name=name,
            node_id=node_id,
            contract_id=contract_id,
            master=LoadedMachine.from_dict(data['master']),
            workers=[LoadedMachine.from_dict(w) for w in data.get('workers', [])],
        )

    def add_networks(self, names: Iterable[str]) -> None:
        with self._lock:
            self.networks.update(names)

    def forget_contracts(self, contract_ids: Iterable[int]) -> None:
        ids = set(contract_ids)
        with self._lock:
            for node_id, contracts in self.node_deployments.items():
                self.node_deployments[node_id] = [c for c in contracts if c not in ids]

    def forget_network(self, name: str) -> None:
        with self._lock:
            self.networks.discard(name)


class _BatchDeployer:
    path = ''
    field = ''

    def __init__(self, client: 'GridClient'):
        self._client = client

    def batch_deploy(self, items: list) -> Dict[str, str]:
        """
        Deploy all items in one grid round trip.
        Returns the failed items as {name: reason}; raises GridError if the whole batch failed.
        """
        if not items:
            return {}

        data = self._client.gateway('POST', self.path, json={self.field: [i.to_dict() for i in items]})
        failed = (data or {}).get('failed', {}) or {}
        self._deployed([i for i in items if i.name not in failed])
        return dict(failed)

    def _deployed(self, items: list) -> None:
        pass


class NetworkDeployer(_BatchDeployer):
    path = '/networks/batch'
    field = 'networks'

    def batch_deploy(self, networks: List[Network]) -> Dict[str, str]:
        return super().batch_deploy(networks)

    def _deployed(self, networks: List[Network]) -> None:
        self._client.state.add_networks(n.name for n in networks)


class DeploymentDeployer(_BatchDeployer):
    path = '/deployments/batch'
    field = 'deployments'

    def batch_deploy(self, deployments: List[Deployment]) -> Dict[str, str]:
        return super().batch_deploy(deployments)


class K8sDeployer(_BatchDeployer):
    path = '/k8s/batch'
    field = 'clusters'

    def batch_deploy(self, clusters: List[K8sCluster]) -> Dict[str, str]:
        return super().batch_deploy(clusters)


class SubstrateConnection:
    def __init__(self, client: 'GridClient'):
        self._client = client

    def cancel_contract(self, identity: str, contract_id: int) -> None:
        try:
            self._client.gateway(
                'DELETE',
                f'/contracts/{contract_id}',
                headers={'X-Grid-Identity': identity},
            )
        except GridError as e:
            if 'ContractNotExists' in str(e):
                raise ContractNotExists(contract_id) from e
            raise


class GridClient:
    """
    Client of the grid proxy (node discovery) and the grid gateway
    (deployments, state and contracts).
    """

    def __init__(
        self,
        proxy_url: str,
        gateway_url: str,
        identity: str,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.proxy_url = proxy_url.rstrip('/')
        self.gateway_url = gateway_url.rstrip('/')
        self.identity = identity
        self.timeout = timeout
        self.session = session or requests.Session()

        self.state = GridState(self)
        self.network_deployer = NetworkDeployer(self)
        self.deployment_deployer = DeploymentDeployer(self)
        self.k8s_deployer = K8sDeployer(self)
        self.substrate = SubstrateConnection(self)

    @classmethod
    def from_config(cls, config) -> 'GridClient':
        return cls(
            proxy_url=config.grid_proxy_url,
            gateway_url=config.grid_gateway_url,
            identity=config.grid_identity,
            timeout=config.grid_timeout_seconds,
        )

    def filter_nodes(self, node_filter: NodeFilter) -> List[Node]:
        data = self._request('GET', f'{self.proxy_url}/nodes', params=node_filter.to_params())
        return [Node(node_id=int(n['nodeId']), farm_id=n.get('farmId')) for n in data or []]

    def gateway(self, method: str, path: str, **kwargs):
        return self._request(method, f'{self.gateway_url}{path}', **kwargs)

    def _request(self, method: str, url: str, **kwargs):
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GridError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            reason = body.get('error', response.text) if isinstance(body, dict) else response.text
            if response.status_code == 404:
                raise GridNotFound(f"{method} {url} returned 404: {reason}")
            raise GridError(f"{method} {url} returned {response.status_code}: {reason}")

        if response.status_code == 204 or not response.content:
            return None
        return response.json()
