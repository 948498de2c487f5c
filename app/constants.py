"""Fixed vocabularies shared by the InspectZen engines and views."""

APP_NAME = "InspectZen"

PART_NAMES = ["Lay shaft assy", "Main reduction gear", "Input shaft"]

PART_SLUGS = {
    "Lay shaft assy": "lay-shaft-assy",
    "Main reduction gear": "main-reduction-gear",
    "Input shaft": "input-shaft",
}

SLUG_TO_PART_NAME = {slug: part for part, slug in PART_SLUGS.items()}

ALL_PARTS = "All"

SHIFT_OPTIONS = ["A", "B"]

INITIAL_DEFECT_TYPES = [
    "Teeth dent",
    "Chamfer dent",
    "Rusty/pit mark",
    "Profile unclean",
    "Spline dent",
    "ID spline unclean",
    "Profile scratch mark",
    "Root burr",
    "Teeth hunting",
]

ROLE_ADMIN = "ADMIN"
ROLE_TPI_INSPECTOR = "TPI_INSPECTOR"
ROLE_FINAL_INSPECTOR = "FINAL_INSPECTOR"
ROLE_DATA_VIEWER = "DATA_VIEWER"

USER_ROLES = [ROLE_ADMIN, ROLE_TPI_INSPECTOR, ROLE_FINAL_INSPECTOR, ROLE_DATA_VIEWER]

USER_ROLE_LABELS = {
    ROLE_ADMIN: "Admin",
    ROLE_TPI_INSPECTOR: "TPI Inspector",
    ROLE_FINAL_INSPECTOR: "Final Inspector",
    ROLE_DATA_VIEWER: "Data Viewer",
}

DEFAULT_ROLE = ROLE_DATA_VIEWER

STATUS_ACTIVE = "active"
STATUS_PENDING = "pending_approval"
STATUS_SUSPENDED = "suspended"

USER_STATUSES = [STATUS_ACTIVE, STATUS_PENDING, STATUS_SUSPENDED]

# Sections and subsections offered to the status-suggestion service.
AI_SECTIONS = {
    "Material Inspection": ["Washing pending", "Multigauge pending"],
    "Final Inspection": ["Multigauge inspection", "Visual inspection"],
    "TPI Inspection": ["TPI Pending", "TPI Done", "TPI OK", "TPI Not OK"],
    "Dispatch": ["RFD", "Dispatch"],
}

PARETO_RANGES = ["all_time", "last_7_days", "current_month"]

REPORT_SHIFT_FILTERS = ["DayTotal"] + SHIFT_OPTIONS

MONTHLY_TARGETS_KEY = "monthly_targets"
DEFECT_TYPES_KEY = "defect_types"
DEFECT_LIST_FIELD = "defects"
