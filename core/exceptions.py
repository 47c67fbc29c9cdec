"""Custom exceptions for the cell engine"""


class CellGridError(Exception):
    """Base exception for all engine errors"""
    pass


class ProviderError(CellGridError):
    """Model provider or network failure, surfaced verbatim"""
    def __init__(self, message: str, cell: str = None):
        super().__init__(message)
        self.message = message
        self.cell = cell


class PollingError(ProviderError):
    """Provider failure reported through job polling"""
    def __init__(self, message: str, cell: str = None, job_id: str = None):
        super().__init__(message, cell=cell)
        self.job_id = job_id


class InsufficientCreditsError(CellGridError):
    """Not enough credits to run a cell"""
    def __init__(self, needed: int, available: int, message: str = None):
        super().__init__(
            message
            or f"Insufficient credits. You need {needed} credits but only have {available}"
        )
        self.needed = needed
        self.available = available


class CellNotFoundError(CellGridError):
    """Cell does not exist in the sheet"""
    def __init__(self, ref: str, sheet_id: str = None):
        where = f" in sheet {sheet_id}" if sheet_id else ""
        super().__init__(f"Cell {ref}{where} not found")
        self.ref = ref
        self.sheet_id = sheet_id


class SheetNotFoundError(CellGridError):
    """Sheet is not loaded in the session"""
    def __init__(self, sheet: str):
        super().__init__(f"Sheet {sheet} not found")
        self.sheet = sheet


class PersistenceError(CellGridError):
    """Persistence collaborator failure"""
    pass
