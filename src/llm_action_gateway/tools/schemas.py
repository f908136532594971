"""JSON Schema definitions and descriptions for the gateway's model-facing tools."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

TAG_TYPES = [
    "AtomicTag",
    "Folder",
    "UdtInstance",
    "OpcTag",
    "ExpressionTag",
    "QueryTag",
    "DerivedTag",
    "ReferenceTag",
]

TAG_DATA_TYPES = [
    "Int1",
    "Int2",
    "Int4",
    "Int8",
    "Float4",
    "Float8",
    "Boolean",
    "String",
    "DateTime",
    "DataSet",
    "Document",
]

QUERY_TYPES = ["Query", "Update", "Insert", "Delete", "Scalar"]

_TAG_PATH = {
    "type": "string",
    "minLength": 1,
    "maxLength": 1000,
    "description": (
        "Full tag path including the provider in brackets, "
        "e.g. '[default]Folder/SubFolder/TagName'."
    ),
}

_PROJECT_NAME = {
    "type": "string",
    "minLength": 1,
    "maxLength": 256,
    "description": "Name of the project.",
}

_VIEW_PATH = {
    "type": "string",
    "minLength": 1,
    "maxLength": 1000,
    "description": "Path to the view within the project, e.g. 'Overview/Main'.",
}

_SCRIPT_TYPE = {
    "type": "string",
    "enum": ["library"],
    "description": "Type of script. Use 'library' for project library scripts.",
}

_SCRIPT_PATH = {
    "type": "string",
    "minLength": 1,
    "maxLength": 1000,
    "description": "Script path within the library, e.g. 'utils/helpers'.",
}

_QUERY_PATH = {
    "type": "string",
    "minLength": 1,
    "maxLength": 1000,
    "description": "Path to the named query, e.g. 'Production/GetBatches'.",
}

_DRY_RUN = {
    "type": "boolean",
    "default": False,
    "description": "If true, validate and preview the change without applying it.",
}

_FORCE = {
    "type": "boolean",
    "default": False,
    "description": (
        "Confirm a destructive operation. Only set after the user has explicitly agreed."
    ),
}

_COMMENT = {
    "type": "string",
    "maxLength": 1000,
    "description": "Comment describing the change, recorded in the audit log.",
}

_ANY_VALUE = {"description": "Any JSON value."}

# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

CREATE_TAG_SCHEMA = {
    "type": "object",
    "properties": {
        "tagPath": _TAG_PATH,
        "tagType": {
            "type": "string",
            "enum": TAG_TYPES,
            "default": "AtomicTag",
            "description": "Type of tag to create.",
        },
        "dataType": {
            "type": "string",
            "enum": TAG_DATA_TYPES,
            "description": "Data type of the tag value (required for AtomicTag).",
        },
        "value": {**_ANY_VALUE, "description": "Initial value for memory tags."},
        "engUnit": {"type": "string", "description": "Engineering unit, e.g. 'degC'."},
        "documentation": {"type": "string", "description": "Tag documentation."},
        "opcItemPath": {"type": "string", "description": "OPC item path (required for OpcTag)."},
        "expression": {
            "type": "string",
            "description": "Expression text (required for ExpressionTag).",
        },
        "typeId": {"type": "string", "description": "UDT type id (required for UdtInstance)."},
        "dryRun": _DRY_RUN,
    },
    "required": ["tagPath"],
    "additionalProperties": False,
}

READ_TAG_SCHEMA = {
    "type": "object",
    "properties": {
        "tagPath": _TAG_PATH,
        "includeValue": {
            "type": "boolean",
            "default": True,
            "description": "Include the current value, quality and timestamp.",
        },
        "includeConfig": {
            "type": "boolean",
            "default": True,
            "description": "Include the tag configuration.",
        },
    },
    "required": ["tagPath"],
    "additionalProperties": False,
}

UPDATE_TAG_SCHEMA = {
    "type": "object",
    "properties": {
        "tagPath": _TAG_PATH,
        "changes": {
            "type": "object",
            "description": "Configuration properties to change, merged into the existing tag.",
        },
        "documentation": {"type": "string", "description": "New documentation."},
        "engUnit": {"type": "string", "description": "New engineering unit."},
        "expression": {"type": "string", "description": "New expression."},
        "comment": _COMMENT,
        "dryRun": _DRY_RUN,
    },
    "required": ["tagPath"],
    "additionalProperties": False,
}

DELETE_TAG_SCHEMA = {
    "type": "object",
    "properties": {
        "tagPath": _TAG_PATH,
        "recursive": {
            "type": "boolean",
            "default": False,
            "description": "Delete a folder together with everything below it.",
        },
        "force": _FORCE,
        "dryRun": _DRY_RUN,
    },
    "required": ["tagPath"],
    "additionalProperties": False,
}

WRITE_TAG_VALUE_SCHEMA = {
    "type": "object",
    "properties": {
        "tagPath": _TAG_PATH,
        "value": {**_ANY_VALUE, "description": "Value to write."},
        "comment": _COMMENT,
    },
    "required": ["tagPath", "value"],
    "additionalProperties": False,
}

LIST_TAGS_SCHEMA = {
    "type": "object",
    "properties": {
        "parentPath": {
            "type": "string",
            "minLength": 1,
            "maxLength": 1000,
            "description": (
                "Folder to browse, e.g. '[default]' or '[default]Folder'. "
                "Use '*' to list all tag providers."
            ),
        },
        "recursive": {
            "type": "boolean",
            "default": False,
            "description": "Include tags in subfolders.",
        },
        "filter": {
            "type": "string",
            "maxLength": 256,
            "description": "Case-insensitive substring filter on tag names.",
        },
    },
    "required": ["parentPath"],
    "additionalProperties": False,
}

# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

CREATE_VIEW_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "viewPath": _VIEW_PATH,
        "root": {
            "type": "object",
            "description": (
                "Root component definition. Defaults to an empty column flex container."
            ),
        },
        "params": {"type": "object", "description": "View parameters."},
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "viewPath"],
    "additionalProperties": False,
}

READ_VIEW_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "viewPath": _VIEW_PATH,
    },
    "required": ["projectName", "viewPath"],
    "additionalProperties": False,
}

UPDATE_VIEW_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "viewPath": _VIEW_PATH,
        "changes": {
            "type": "object",
            "description": "Top-level view properties to merge, e.g. a new 'root'.",
        },
        "jsonPatch": {
            "type": "array",
            "items": {"type": "object"},
            "description": "RFC 6902 JSON Patch operations applied to the view.",
        },
        "comment": _COMMENT,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "viewPath"],
    "additionalProperties": False,
}

DELETE_VIEW_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "viewPath": _VIEW_PATH,
        "force": _FORCE,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "viewPath"],
    "additionalProperties": False,
}

LIST_VIEWS_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "parentPath": {
            "type": "string",
            "maxLength": 1000,
            "description": "Folder to list; empty for the project root.",
        },
        "recursive": {
            "type": "boolean",
            "default": True,
            "description": "Include views in subfolders.",
        },
    },
    "required": ["projectName"],
    "additionalProperties": False,
}

# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

LIST_PROJECTS_SCHEMA = {
    "type": "object",
    "properties": {
        "includeDisabled": {
            "type": "boolean",
            "default": False,
            "description": "Include disabled projects.",
        },
    },
    "additionalProperties": False,
}

READ_PROJECT_SCHEMA = {
    "type": "object",
    "properties": {"projectName": _PROJECT_NAME},
    "required": ["projectName"],
    "additionalProperties": False,
}

# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------

_SCRIPT_CODE = {
    "type": "string",
    "minLength": 1,
    "description": "Full script source.",
}

_ACKNOWLEDGE_WARNINGS = {
    "type": "boolean",
    "default": False,
    "description": "Set after reviewing validation warnings with the user.",
}

CREATE_SCRIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "scriptType": _SCRIPT_TYPE,
        "scriptPath": _SCRIPT_PATH,
        "code": _SCRIPT_CODE,
        "documentation": {"type": "string", "description": "Script documentation."},
        "acknowledgeWarnings": _ACKNOWLEDGE_WARNINGS,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "scriptType", "scriptPath", "code"],
    "additionalProperties": False,
}

READ_SCRIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "scriptType": _SCRIPT_TYPE,
        "scriptPath": _SCRIPT_PATH,
    },
    "required": ["projectName", "scriptType", "scriptPath"],
    "additionalProperties": False,
}

UPDATE_SCRIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "scriptType": _SCRIPT_TYPE,
        "scriptPath": _SCRIPT_PATH,
        "code": _SCRIPT_CODE,
        "documentation": {"type": "string", "description": "New documentation."},
        "acknowledgeWarnings": _ACKNOWLEDGE_WARNINGS,
        "comment": _COMMENT,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "scriptType", "scriptPath", "code"],
    "additionalProperties": False,
}

DELETE_SCRIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "scriptType": _SCRIPT_TYPE,
        "scriptPath": _SCRIPT_PATH,
        "force": _FORCE,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "scriptType", "scriptPath"],
    "additionalProperties": False,
}

LIST_SCRIPTS_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "scriptType": _SCRIPT_TYPE,
        "parentPath": {
            "type": "string",
            "maxLength": 1000,
            "description": "Folder to list; empty for the library root.",
        },
    },
    "required": ["projectName", "scriptType"],
    "additionalProperties": False,
}

# ---------------------------------------------------------------------------
# Named queries
# ---------------------------------------------------------------------------

_QUERY_TYPE = {
    "type": "string",
    "enum": QUERY_TYPES,
    "description": "Query (SELECT), Update, Insert, Delete or Scalar.",
}

_QUERY_PARAMETERS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "type": {"type": "string"},
            "sqlType": {"type": "string"},
        },
        "required": ["name"],
    },
    "description": "Declared parameters, referenced in SQL as :name.",
}

CREATE_NAMED_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "queryPath": _QUERY_PATH,
        "queryType": _QUERY_TYPE,
        "database": {
            "type": "string",
            "minLength": 1,
            "description": "Database connection name.",
        },
        "query": {"type": "string", "minLength": 1, "description": "SQL text."},
        "parameters": _QUERY_PARAMETERS,
        "fallbackValue": {**_ANY_VALUE, "description": "Value returned if the query fails."},
        "cacheEnabled": {
            "type": "boolean",
            "default": False,
            "description": "Cache query results.",
        },
        "cacheExpiry": {
            "type": "integer",
            "minimum": 0,
            "description": "Cache lifetime in seconds.",
        },
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "queryPath", "queryType", "database", "query"],
    "additionalProperties": False,
}

READ_NAMED_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "queryPath": _QUERY_PATH,
    },
    "required": ["projectName", "queryPath"],
    "additionalProperties": False,
}

UPDATE_NAMED_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "queryPath": _QUERY_PATH,
        "queryType": _QUERY_TYPE,
        "database": {"type": "string", "description": "New database connection name."},
        "query": {"type": "string", "description": "New SQL text."},
        "parameters": _QUERY_PARAMETERS,
        "fallbackValue": {**_ANY_VALUE, "description": "Value returned if the query fails."},
        "cacheEnabled": {"type": "boolean", "description": "Cache query results."},
        "cacheExpiry": {
            "type": "integer",
            "minimum": 0,
            "description": "Cache lifetime in seconds.",
        },
        "comment": _COMMENT,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "queryPath"],
    "additionalProperties": False,
}

DELETE_NAMED_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "queryPath": _QUERY_PATH,
        "force": _FORCE,
        "dryRun": _DRY_RUN,
    },
    "required": ["projectName", "queryPath"],
    "additionalProperties": False,
}

LIST_NAMED_QUERIES_SCHEMA = {
    "type": "object",
    "properties": {
        "projectName": _PROJECT_NAME,
        "parentPath": {
            "type": "string",
            "maxLength": 1000,
            "description": "Folder to list; empty for the project root.",
        },
    },
    "required": ["projectName"],
    "additionalProperties": False,
}

TOOL_SCHEMAS: Mapping[str, Mapping[str, Any]] = {
    "create_tag": CREATE_TAG_SCHEMA,
    "read_tag": READ_TAG_SCHEMA,
    "update_tag": UPDATE_TAG_SCHEMA,
    "delete_tag": DELETE_TAG_SCHEMA,
    "write_tag_value": WRITE_TAG_VALUE_SCHEMA,
    "list_tags": LIST_TAGS_SCHEMA,
    "create_view": CREATE_VIEW_SCHEMA,
    "read_view": READ_VIEW_SCHEMA,
    "update_view": UPDATE_VIEW_SCHEMA,
    "delete_view": DELETE_VIEW_SCHEMA,
    "list_views": LIST_VIEWS_SCHEMA,
    "list_projects": LIST_PROJECTS_SCHEMA,
    "read_project": READ_PROJECT_SCHEMA,
    "create_script": CREATE_SCRIPT_SCHEMA,
    "read_script": READ_SCRIPT_SCHEMA,
    "update_script": UPDATE_SCRIPT_SCHEMA,
    "delete_script": DELETE_SCRIPT_SCHEMA,
    "list_scripts": LIST_SCRIPTS_SCHEMA,
    "create_named_query": CREATE_NAMED_QUERY_SCHEMA,
    "read_named_query": READ_NAMED_QUERY_SCHEMA,
    "update_named_query": UPDATE_NAMED_QUERY_SCHEMA,
    "delete_named_query": DELETE_NAMED_QUERY_SCHEMA,
    "list_named_queries": LIST_NAMED_QUERIES_SCHEMA,
}

TOOL_DESCRIPTIONS: Mapping[str, str] = {
    "create_tag": (
        "Create a new tag. Required fields depend on tagType: AtomicTag needs dataType, "
        "OpcTag needs opcItemPath, ExpressionTag needs expression, UdtInstance needs typeId. "
        "Path format: [provider]path/to/NewTag"
    ),
    "read_tag": (
        "Read a tag's configuration and current value. "
        "Path format: [provider]path/to/tag, e.g. [default]Folder/Tag"
    ),
    "update_tag": "Update a tag's configuration. Changes are merged into the existing tag.",
    "delete_tag": "Delete a tag (requires confirmation).",
    "write_tag_value": "Write a value to an existing tag.",
    "list_tags": (
        "List tags in a folder, or all tag providers. Use parentPath '*' for providers, "
        "'[default]' for the default provider root, or '[default]Folder' for a folder."
    ),
    "create_view": "Create a new view in a project.",
    "read_view": "Read a view's definition.",
    "update_view": "Update a view by merging changes or applying JSON Patch operations.",
    "delete_view": "Delete a view (requires confirmation).",
    "list_views": "List the views in a project.",
    "list_projects": "List all available projects.",
    "read_project": "Read a project's configuration.",
    "create_script": (
        "Create a new project library script. Resource path is "
        "{projectName}/library/{scriptPath}; use scriptType 'library'."
    ),
    "read_script": "Read a project library script's content.",
    "update_script": "Replace the content of a project library script.",
    "delete_script": "Delete a project library script (requires confirmation).",
    "list_scripts": "List project library scripts.",
    "create_named_query": (
        "Create a new named query. Valid queryType values: Query (for SELECT), "
        "Update, Insert, Delete, Scalar."
    ),
    "read_named_query": "Read a named query's configuration and SQL.",
    "update_named_query": "Update a named query.",
    "delete_named_query": "Delete a named query (requires confirmation).",
    "list_named_queries": "List the named queries in a project.",
}
