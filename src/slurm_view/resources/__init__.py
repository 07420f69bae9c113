"""Resource modules served by the proxy.

Each module provides a ``fetch`` function that pulls data through the
shared SlurmRestApiClient and returns the model written back to callers.
"""
