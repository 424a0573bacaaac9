from flowers_api.models.user import ROLE_ADMIN, ROLE_CLIENT, User

__all__ = [
    "User",
    "ROLE_ADMIN",
    "ROLE_CLIENT",
]
