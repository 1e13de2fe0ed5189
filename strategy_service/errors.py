"""Error taxonomy shared by workers, services and the API layer."""


class StrategyServiceError(Exception):
    """Base class for errors raised by the strategy service."""


class ValidationError(StrategyServiceError):
    """Malformed signal, address, percentage or action. Never retried."""


class ExecutionError(StrategyServiceError):
    """Swap failure, insufficient balance or missing holdings."""


class UpstreamUnavailable(StrategyServiceError):
    """An external provider (oracle, RPC, aggregator, price feed) failed."""


class UpstreamTimeout(UpstreamUnavailable):
    """An external provider did not answer within its deadline."""


class PersistenceError(StrategyServiceError):
    """A ledger or holdings write failed."""
