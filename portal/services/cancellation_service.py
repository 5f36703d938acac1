import logging
from typing import Optional

from portal.exceptions import ContractNotExists
from portal.grid.client import GridClient
from portal.services.messages import WorkloadKind

logger = logging.getLogger(__name__)


class CancellationService:
    def __init__(self, grid: GridClient):
        self.grid = grid

    def cancel(self, workload_contract: Optional[int], network_contract: Optional[int],
               kind: WorkloadKind, name: str) -> None:
        """
        Cancel a deployed workload on the grid, workload contract first.
        Contracts that no longer exist count as cancelled, so calling this
        again after a partial failure finishes the job.
        """
        for contract_id in (workload_contract, network_contract):
            if not contract_id:
                continue
            try:
                self.grid.substrate.cancel_contract(self.grid.identity, contract_id)
                logger.info("Cancelled contract %s of %s '%s'", contract_id, kind.value, name)
            except ContractNotExists:
                logger.info("Contract %s of %s '%s' was already cancelled", contract_id, kind.value, name)

        self.grid.state.forget_contracts(c for c in (workload_contract, network_contract) if c)
        self.grid.state.forget_network(kind.network_name(name))
