from .network_client import NetworkClient

__all__ = ["NetworkClient"]
