"""Bridge and test environment configuration."""

import os

CLUSTER_NODE_LIMIT = 6
IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))

CCM_COMMAND = os.environ.get("CCM_COMMAND") or "ccm"

CASSANDRA_VERSION = os.environ.get("CCM_CASSANDRA_VERSION") or "3.4"
DSE_VERSION = os.environ.get("CCM_DSE_VERSION") or "4.8.5"
# Flags are set when the env variable is non-empty
USE_GIT = bool(os.environ.get("CCM_USE_GIT"))
USE_DSE = bool(os.environ.get("CCM_USE_DSE"))

CLUSTER_PREFIX = os.environ.get("CCM_CLUSTER_PREFIX") or "cpp-driver"

DSE_CREDENTIALS = os.environ.get("CCM_DSE_CREDENTIALS") or "username_password"
if DSE_CREDENTIALS not in ("username_password", "ini_file"):
    msg = f"Invalid CCM_DSE_CREDENTIALS: {DSE_CREDENTIALS}"
    raise RuntimeError(msg)
DSE_USERNAME = os.environ.get("CCM_DSE_USERNAME") or ""
DSE_PASSWORD = os.environ.get("CCM_DSE_PASSWORD") or ""

DEPLOYMENT = os.environ.get("CCM_DEPLOYMENT") or "local"
if DEPLOYMENT not in ("local", "ssh"):
    msg = f"Invalid CCM_DEPLOYMENT: {DEPLOYMENT}"
    raise RuntimeError(msg)

AUTHENTICATION = os.environ.get("CCM_AUTHENTICATION") or "username_password"
if AUTHENTICATION not in ("username_password", "public_key"):
    msg = f"Invalid CCM_AUTHENTICATION: {AUTHENTICATION}"
    raise RuntimeError(msg)

HOST = os.environ.get("CCM_HOST") or "127.0.0.1"
SSH_PORT = int(os.environ.get("CCM_SSH_PORT") or 22)
SSH_USERNAME = os.environ.get("CCM_SSH_USERNAME") or "vagrant"
SSH_PASSWORD = os.environ.get("CCM_SSH_PASSWORD") or "vagrant"
SSH_PUBLIC_KEY = os.environ.get("CCM_SSH_PUBLIC_KEY") or ""
SSH_PRIVATE_KEY = os.environ.get("CCM_SSH_PRIVATE_KEY") or ""

# Seconds a single remote command may run
COMMAND_TIMEOUT = float(os.environ.get("CCM_COMMAND_TIMEOUT") or 600)

SSL_PATH = os.environ.get("CCM_SSL_PATH") or "ssl"

# Working directory for local execution; empty means the current one
WORKDIR = os.environ.get("CCM_WORKDIR") or ""

# Bound for "wait until up/down" status polling
STATUS_ATTEMPTS = int(os.environ.get("CCM_STATUS_ATTEMPTS") or 10)
STATUS_DELAY = float(os.environ.get("CCM_STATUS_DELAY") or 5)
if STATUS_ATTEMPTS < 1:
    msg = f"Invalid CCM_STATUS_ATTEMPTS '{STATUS_ATTEMPTS}': must be >= 1"
    raise RuntimeError(msg)

# Topology of the cluster used by the pytest plugin
DC1_NODES = int(os.environ.get("CCM_DC1_NODES") or 1)
DC2_NODES = int(os.environ.get("CCM_DC2_NODES") or 0)
if DC1_NODES + DC2_NODES > CLUSTER_NODE_LIMIT:
    msg = f"Too many nodes requested: {DC1_NODES + DC2_NODES} > {CLUSTER_NODE_LIMIT}"
    raise RuntimeError(msg)

# Clusters are kept after the pytest session finishes
KEEP_CLUSTER = bool(os.environ.get("CCM_KEEP_CLUSTER"))
