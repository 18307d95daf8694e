"""Multi-supplier VAS catalog synchronization and best-offer resolution."""
