"""phaseclean - phase-checkpointed document cleaning."""

__version__ = "0.1.0"
