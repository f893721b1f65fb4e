from buildhost.services.game_service import GameService
from buildhost.services.user_service import UserService
from buildhost.services.storage_service import StorageService, storage_service, get_storage

__all__ = [
    "GameService",
    "UserService",
    "StorageService",
    "storage_service",
    "get_storage",
]
