class QuantumSuiteError(Exception):
    """Base exception for all risk and ensemble engine errors."""
    pass

class UnknownActionError(QuantumSuiteError):
    """Client asked the risk dispatcher for an action it does not support."""
    def __init__(self, action: str, available: tuple):
        self.action    = action
        self.available = available
        super().__init__(
            f"Unknown action '{action}'. Available actions: {', '.join(available)}"
        )

class StoreError(QuantumSuiteError):
    """Performance store could not be read or written."""
    pass
