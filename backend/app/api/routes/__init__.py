from . import admin_backups, auth, system

__all__ = ["admin_backups", "auth", "system"]
