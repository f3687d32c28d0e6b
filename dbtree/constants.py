OPTION_FILE_NAME = ".dbtree"
DEFAULT_ENVIRONMENT = "production"

# Global option files, lowest precedence first.  ``~`` is expanded at read time.
GLOBAL_OPTION_FILES = (
    ("/etc", "dbtree", False),
    ("/usr/local/etc", "dbtree", False),
    ("~", ".my.cnf", True),           # only the [client] section, unknown keys ignored
    ("~", OPTION_FILE_NAME, False),
)

# Session settings every instance connection is opened with.
DSN_PARAMS = {"interpolateParams": "true", "foreign_key_checks": "0"}
MASKED_PASSWORD = "*****"

MAX_SQL_FILE_SIZE = 16 * 1024
SYSTEM_SCHEMAS = {"information_schema", "performance_schema", "mysql", "sys"}
