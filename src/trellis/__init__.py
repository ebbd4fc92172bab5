"""Trellis: reusable project templates merged into new project directories."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trellis")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from trellis.definitions import UNCONFIGURED, Registry, TemplateRecord, Unconfigured
from trellis.merge import MergeEngine, TemplateContent, apply_template, load_content
from trellis.store import RegistryStore, StoreConfig

__all__ = [
    "UNCONFIGURED",
    "MergeEngine",
    "Registry",
    "RegistryStore",
    "StoreConfig",
    "TemplateContent",
    "TemplateRecord",
    "Unconfigured",
    "__version__",
    "apply_template",
    "load_content",
]
