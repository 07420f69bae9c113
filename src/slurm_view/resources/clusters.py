"""Cluster listing, passed through from slurmdbd unchanged."""

from typing import Any

from .. import slurmrestapi


def fetch(client: slurmrestapi.SlurmRestApiClient) -> dict[str, Any]:
    """Fetch the cluster listing as a JSON-ready dict.

    Every key of the upstream body is kept and defaults for keys the
    upstream omitted are not emitted, so the result mirrors slurmdbd's
    payload.
    """
    listing = client.get_clusters()
    payload = listing.model_dump(mode="json")

    if "clusters" not in listing.model_fields_set:
        del payload["clusters"]
        return payload

    for cluster, served in zip(listing.clusters, payload["clusters"]):
        if "name" not in cluster.model_fields_set:
            del served["name"]
    return payload
