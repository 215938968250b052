"""Registry of API clients, one per remote account.

Each account owns its own limiter state, so all callers of one account
share one quota. Handlers receive a client from here (or a test double)
as a parameter instead of importing a module-level instance.

Only the default account is configured from the environment; any other
account must be registered with its own client first.
"""

from src.clients.api_client import RateLimitedApiClient
from src.config.settings import get_settings

DEFAULT_ACCOUNT = "default"

_clients: dict[str, RateLimitedApiClient] = {}


def get_api_client(account: str = DEFAULT_ACCOUNT) -> RateLimitedApiClient:
    """Get or create the client for an account.

    Raises:
        KeyError: `account` is not the default one and was never registered.
    """
    if account in _clients:
        return _clients[account]
    if account != DEFAULT_ACCOUNT:
        raise KeyError(f"No API client registered for account '{account}'")

    _clients[account] = RateLimitedApiClient.from_settings(get_settings())
    return _clients[account]


def register_api_client(account: str, client: RateLimitedApiClient) -> None:
    """Install a pre-built client for an account (replaces any existing one)."""
    _clients[account] = client


async def close_all_clients() -> None:
    """Gracefully shut down all client connections."""
    for client in _clients.values():
        await client.close()
    _clients.clear()
