from dataclasses import dataclass


@dataclass(frozen=True)
class RetryConfig:
    """Transient failure handling for RPC requests."""

    max_retries: int = 4
    """The total number of attempts for a request (including the first one)."""

    initial_delay: float = 0.5
    """The delay before the second attempt, in seconds. Doubles with each subsequent attempt."""

    max_delay: float = 5.0
    """The upper bound for the delay between attempts, in seconds."""

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"`max_retries` must be at least 1, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")

    def delay(self, attempt: int) -> float:
        """The delay after the failed ``attempt`` (0-based), in seconds."""
        return min(self.initial_delay * 2**attempt, self.max_delay)


@dataclass(frozen=True)
class NetworkConfig:
    """Connection parameters of a known network."""

    network_id: str
    """The network name, also used to locate credential files."""

    rpc_url: str


MAINNET = NetworkConfig(network_id="mainnet", rpc_url="https://free.rpc.fastnear.com")

TESTNET = NetworkConfig(network_id="testnet", rpc_url="https://test.rpc.fastnear.com")
