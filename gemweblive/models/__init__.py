"""Model descriptors and the model catalogue."""

from .capabilities import ModelCapabilities, ModelParameter, Modality
from .catalog import ModelCatalog, catalog

__all__ = ["ModelCapabilities", "ModelParameter", "Modality", "ModelCatalog", "catalog"]
