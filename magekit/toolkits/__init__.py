"""
magekit.toolkits - Concrete tool kits handed to mages.
"""

from .fs import build_fs_kit
from .image import build_image_kit
from .shell import build_shell_kit

__all__ = ["build_fs_kit", "build_image_kit", "build_shell_kit"]
