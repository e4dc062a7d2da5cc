# Keys used by relationship entries in wizard step data
RELATED_ENTITY_ID_KEY = "relatedEntityId"
RELATED_ENTITY_KEY = "relatedEntity"
CHILD_PROGRESS_ID_KEY = "__childProgressId"

# Keys never sent to the backend
TRANSIENT_ENTRY_KEYS = (RELATED_ENTITY_KEY, RELATED_ENTITY_ID_KEY, CHILD_PROGRESS_ID_KEY)

FOREIGN_KEY_SUFFIX = "Id"
FOREIGN_KEY_LIST_SUFFIX = "Ids"

DEFAULT_DEBOUNCE_DELAY_MS = 300

VALIDATION_FAILED_MESSAGE = "Validation failed to execute: {0}"

# Log messages
LOGMSG_ERR_VALIDATION_EXECUTION = "Validation call for field {0} failed: {1}"
LOGMSG_ERR_PROGRESS_SAVE = "Failed to save progress for configuration {0}: {1}"
LOGMSG_ERR_PROGRESS_LOAD = "Failed to load progress {0}: {1}"
LOGMSG_ERR_NORMALIZATION = "Submission normalization failed for {0}: {1}"
LOGMSG_WAR_UNPARSABLE_ORDER = "Unparsable order list {0!r}, keeping stored order"
LOGMSG_WAR_UNPARSABLE_CONDITION = "Unparsable condition {0!r}: {1}"
LOGMSG_WAR_PATH_SEGMENT_MISSING = "Property {0!r} not found while resolving {1!r}"
LOGMSG_WAR_PATH_NOT_OBJECT = "Cannot navigate to {0!r} while resolving {1!r}, value is not an object"
LOGMSG_WAR_UNPARSABLE_STEP_DATA = "Unparsable step data in progress {0}: {1}"
LOGMSG_WAR_CHILD_PROGRESS_UNRESOLVED = "Child progress {0} has no related entity id, skipping merge"
LOGMSG_INF_SESSION_LOADED = "Wizard session for {0} loaded at step {1}"
LOGMSG_INF_SESSION_SAVED = "Progress {0} saved with status {1}"
LOGMSG_INF_SESSION_SUBMITTED = "Wizard session for {0} submitted (progress {1})"
