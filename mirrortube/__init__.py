"""Multi-source YouTube stream and metadata resolution across public mirrors."""

__version__ = "1.0.0"
