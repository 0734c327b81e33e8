"""
Shared module to hold constant values for the library
"""

# Group of the mesh API that owns MeshGateway, GatewayClass and
# GatewayClassConfig
MESH_GROUP = "mesh.consul.hashicorp.com"
MESH_API_VERSION = f"{MESH_GROUP}/v2beta1"

# Kinds of the parent and class-configuration resources
MESH_GATEWAY_KIND = "MeshGateway"
GATEWAY_CLASS_KIND = "GatewayClass"
GATEWAY_CLASS_CONFIG_KIND = "GatewayClassConfig"

# Annotation that kubectl writes on apply. It must never be carried forward
# onto a written child or it nests recursively.
LAST_APPLIED_ANNOTATION_NAME = "kubectl.kubernetes.io/last-applied-configuration"

# Log config annotations on the parent
LOG_DEFAULT_LEVEL_NAME = "meshgate.io/log-default-level"
LOG_FILTERS_NAME = "meshgate.io/log-filters"
LOG_JSON_NAME = "meshgate.io/log-json"
LOG_THREAD_ID_NAME = "meshgate.io/log-thread-id"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
