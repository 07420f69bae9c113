"""slurm-view.

Read-only HTTP proxy in front of the SLURM REST API that forwards
credentials and reshapes cluster and job payloads for the web frontend.
"""

__version__ = "0.1.0"
