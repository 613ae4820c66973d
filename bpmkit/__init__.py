"""Build OCI runtime specs and manage job processes running under runc."""

__version__ = "0.1.0"