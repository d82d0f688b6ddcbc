"""Extension and size based classification."""

from .engine import Classifier, Destination

__all__ = ["Classifier", "Destination"]
