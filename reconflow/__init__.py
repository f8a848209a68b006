"""ReconFlow: security-assessment workflow graphs on a remote task backend."""

__version__ = "1.0.0"
