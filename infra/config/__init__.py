from .filesystem_config_provider import FileSystemConfigProvider

__all__ = ["FileSystemConfigProvider"]
