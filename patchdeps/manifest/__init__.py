from .loader import find_manifest, load_manifest
from .models import PatchDescriptor, PatchSpec, SourceKind

__all__ = [
    "find_manifest",
    "load_manifest",
    "PatchDescriptor",
    "PatchSpec",
    "SourceKind",
]
