API_GROUP = "scheduling.deesup.com"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

SCHEDULER_KIND = "Scheduler"
SCHEDULER_PLURAL = "schedulers"

CRONJOB_API_VERSION = "batch/v1"
CRONJOB_KIND = "CronJob"
CRONJOB_PLURAL = "cronjobs"

CONTROLLER_ID = "scheduler-controller"

# Label keys used for ownership-scoped listing
LABEL_APP = "app"
LABEL_SCHEDULER = "scheduler"
LABEL_SCHEDULE = "schedule"

# Condition types
COND_READY = "Ready"

# Condition reasons
REASON_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_RECONCILE_ERROR = "ReconcileError"

# Status fields written by this controller
STATUS_FIELDS = ("observedGeneration", "lastScheduleTime", "active", "conditions")

CONTAINER_NAME = "job"
DEFAULT_REQUEUE_DELAY = 30.0
