from .client_manager import MCPClientManager
from .user_client import UserClient

__all__ = ["MCPClientManager", "UserClient"]
