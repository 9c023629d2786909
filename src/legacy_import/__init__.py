"""Legacy import cluster validation service.

Coordinates human validation of triaged, clustered documents from a legacy
document import and the asynchronous re-clustering of reclassified documents.
"""

__version__ = "0.1.0"
