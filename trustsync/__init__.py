"""step-ca trust propagation for containers and hosts."""

__version__ = "1.0.0"
