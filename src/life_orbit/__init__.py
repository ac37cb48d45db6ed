"""life-orbit: retrieval-augmented memory engine for a personal thought organizer."""

from life_orbit.models import OrbitLevel, Thought, StoreEvent, EventKind
from life_orbit.config import OrbitConfig
from life_orbit.errors import Reason, OrbitError, StoreError, ImportFormatError
from life_orbit.embeddings import EmbeddingGateway, numpy_embed, ollama_embed, gemini_embed
from life_orbit.classifier import RetrievalClassifier, gemini_classify, ollama_classify
from life_orbit.orbit import Orbit, CaptureResult, CaptureStatus, Outcome

__version__ = "0.1.0"
__all__ = [
    "Orbit", "CaptureResult", "CaptureStatus", "Outcome",
    "Thought", "OrbitLevel", "StoreEvent", "EventKind", "OrbitConfig",
    "Reason", "OrbitError", "StoreError", "ImportFormatError",
    "EmbeddingGateway", "RetrievalClassifier",
    "numpy_embed", "ollama_embed", "gemini_embed",
    "gemini_classify", "ollama_classify",
]
