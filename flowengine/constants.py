"""Engine-wide defaults."""

DEFAULT_SWEEP_INTERVAL = 60.0
DEFAULT_STUCK_THRESHOLD = 600.0
DEFAULT_MAX_LOOP_ITERATIONS = 100
DEFAULT_MAX_FANOUT_DEPTH = 10
DEFAULT_MAX_PARALLEL_CHILDREN = 5
DEFAULT_MAX_CONCURRENT_EXECUTIONS = 5

EXECUTIONS_TOPIC = "executions"

# Outgoing edge label a Parallel/Loop parent follows after a successful join.
DONE_LABEL = "done"
DEFAULT_LOOP_ALIAS = "item"

# Output keys with this prefix are engine directives and never merged into context.
DIRECTIVE_PREFIX = "_"
BRANCH_KEY = "_branch"
ITEMS_KEY = "_items"
ALIAS_KEY = "_alias"
CHILDREN_KEY = "_children"
SKIPPED_KEY = "_skipped"
