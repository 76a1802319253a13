"""
Shared constants for docbridge.
"""

# Reserved content fields
METADATA_FIELD = "_metadata"
CLASS_PERMISSIONS_FIELD = "class_permissions"
UPDATED_AT_FIELD = "updatedAt"

# Legacy field names rewritten before an update is applied
FIELD_ALIASES = {"_updated_at": UPDATED_AT_FIELD}

# Schema-field-definition update shape: {"fieldName": ..., "theFieldType": ...}
FIELD_NAME_KEY = "fieldName"
FIELD_TYPE_KEY = "theFieldType"

# Fields kept by projection even when not requested
ALWAYS_KEPT_FIELDS = frozenset({"createdAt", "updatedAt", "objectId"})
PERMISSION_FIELDS = frozenset({"_rperm", "_wperm"})

# Native sort datatypes
SORT_NUMBER = "number"
SORT_STRING = "string"

# Path syntax the native store uses to address members of array elements
ARRAY_MEMBER_SEPARATOR = "[*]."

# Allowed explain values (accepted, but explain plans are not produced)
EXPLAIN_ALLOWED_VALUES = (
    "queryPlanner",
    "queryPlannerExtended",
    "executionStats",
    "allPlansExecution",
    False,
    True,
)

# Primary-key index created with every new collection
ID_INDEX_NAME = "_id_"
ID_FIELD = "_id"
