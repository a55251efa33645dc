"""chain-deployer: resumable, confirmation-aware deployment of ledger steps."""

__version__ = "0.1.0"
