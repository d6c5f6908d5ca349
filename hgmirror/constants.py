# Directory under every node root holding one mirror per cache identifier
CACHE_DIR_NAME = "hgcache"

# Master-side bundles are per node, since several nodes may sync the same
# repository at once. The node side only ever sees its own transfer.
MASTER_BUNDLE_TEMPLATE = "xfer-{node}.hg"
NODE_BUNDLE_NAME = "xfer.hg"

MASTER_NODE_NAME = "master"

# hg
DEFAULT_HG_EXECUTABLE = "hg"
DEFAULT_POLL_TIMEOUT = "10m"
