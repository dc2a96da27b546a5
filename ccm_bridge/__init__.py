"""Bridge to `ccm` managed Cassandra/DSE test clusters, running locally or over SSH."""
