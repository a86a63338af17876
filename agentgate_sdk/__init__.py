from agentgate_sdk.client import GatekeeperClient

__all__ = ["GatekeeperClient"]
