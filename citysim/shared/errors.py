class CitySimError(Exception):
    """Base class for every error raised by the simulation core."""


class CycleAbortedError(CitySimError):
    """
    Raised by the Engine when a system fails mid-cycle.

    The session discards the working copy of the world when it sees this,
    so the last committed state (and the ledgers on disk) stay untouched.
    """

    def __init__(self, system_id: str, cycle: int):
        super().__init__(f"Cycle {cycle} aborted in system '{system_id}'")
        self.system_id = system_id
        self.cycle = cycle


class LedgerSchemaError(CitySimError):
    """The ledger directory was written by a newer schema than this build knows."""


class SaveNotFoundError(CitySimError, FileNotFoundError):
    pass
