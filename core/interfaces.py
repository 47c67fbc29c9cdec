"""Abstract base classes for the engine's external collaborators"""

from abc import ABC, abstractmethod

from .models import (
    Cell,
    Connection,
    CreditCheck,
    JobStatusResult,
    ProviderRequest,
    ProviderResult,
)


class ModelProvider(ABC):
    """Generative model backend"""

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> ProviderResult:
        """Run a generation; may answer immediately or defer to a job"""
        pass

    @abstractmethod
    async def check_job(self, job_id: str) -> JobStatusResult:
        """Report the status of a deferred job"""
        pass


class CellStore(ABC):
    """Persistence collaborator for cells and connections"""

    @abstractmethod
    async def save_cell(self, sheet_id: str, cell: Cell) -> None:
        pass

    @abstractmethod
    async def get_sheet_cells(self, sheet_id: str) -> list[Cell]:
        pass

    @abstractmethod
    async def delete_cell(self, sheet_id: str, cell_id: str) -> None:
        pass

    @abstractmethod
    async def get_connections(self, sheet_id: str) -> list[Connection]:
        pass

    @abstractmethod
    async def save_connections(self, sheet_id: str, connections: list[Connection]) -> None:
        pass


class BillingService(ABC):
    """Credit accounting collaborator"""

    @abstractmethod
    async def check_and_deduct_credits(self, user_id: str, cost: int) -> CreditCheck:
        """Deduct `cost` credits or report the shortfall"""
        pass
