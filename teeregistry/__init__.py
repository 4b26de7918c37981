"""In-memory registry of remotely attested SGX enclaves and a whitelisted exchange-rate oracle."""

__version__ = "0.1.0"

__all__ = ["__version__"]