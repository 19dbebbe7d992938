# clients/ - Remote API clients
from clients.remote_store import RemoteAggregateStore
