import pytest

from portal.exceptions import ContractNotExists, GridError, GridNotFound
from portal.grid.workloads import Network, NodeFilter
from fakes import FakeGrid


def test_filter_nodes_sends_filter_params():
    grid = FakeGrid()
    grid.backend.nodes = [{'nodeId': 11, 'farmId': 1}, {'nodeId': 12, 'farmId': 3}]

    nodes = grid.filter_nodes(NodeFilter(free_mru=1, free_sru=2, free_ips=0, farm_ids=[3, 1], region="europe"))

    assert [n.node_id for n in nodes] == [11, 12]
    assert grid.backend.node_queries == [{
        'status': 'up',
        'free_mru': 1,
        'free_sru': 2,
        'free_ips': 0,
        'ipv6': 'true',
        'farm_ids': '1,3',
        'size': 1,
        'region': 'europe',
    }]


def test_network_batch_reports_failed_items():
    grid = FakeGrid()
    grid.backend.fail_networks = {"betavmNet": "no capacity"}

    failed = grid.network_deployer.batch_deploy([
        Network(name="alphavmNet", nodes=[11]),
        Network(name="betavmNet", nodes=[11]),
    ])

    assert failed == {"betavmNet": "no capacity"}
    assert grid.state.networks == {"alphavmNet"}


def test_whole_batch_failure_raises():
    grid = FakeGrid()
    grid.backend.fail_batch = {'/networks/batch'}

    with pytest.raises(GridError) as exc:
        grid.network_deployer.batch_deploy([Network(name="alphavmNet", nodes=[11])])
    assert 'batch rejected' in str(exc.value)


def test_empty_batch_makes_no_call():
    grid = FakeGrid()

    assert grid.deployment_deployer.batch_deploy([]) == {}
    assert grid.backend.calls == []


def test_load_network_fills_contract_cache():
    grid = FakeGrid()
    grid.network_deployer.batch_deploy([Network(name="alphavmNet", nodes=[11])])

    network = grid.state.load_network("alphavmNet")

    contract_id = network.node_deployment_id[11]
    assert grid.state.node_deployments == {11: [contract_id]}

    grid.state.forget_contracts([contract_id])
    assert grid.state.node_deployments == {11: []}


def test_cancel_unknown_contract():
    grid = FakeGrid()

    with pytest.raises(ContractNotExists) as exc:
        grid.substrate.cancel_contract(grid.identity, 42)
    assert exc.value.contract_id == 42


def test_missing_workload_is_reported_as_not_found():
    grid = FakeGrid()

    with pytest.raises(GridNotFound):
        grid.state.load_deployment(11, "alpha")
    with pytest.raises(GridNotFound):
        grid.state.load_network("alphavmNet")


def test_server_errors_are_not_reported_as_not_found():
    grid = FakeGrid()
    grid.backend.fail_batch = {'/deployments/batch'}

    with pytest.raises(GridError) as exc:
        grid.gateway('POST', '/deployments/batch', json={'deployments': []})
    assert not isinstance(exc.value, GridNotFound)
