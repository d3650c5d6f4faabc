"""Fixed values shared by Workstation services."""

SERVICE_PORT = 8787
DEFAULT_REMOTE_PORT = 8788

SERVICE_USER = "rstudio"
SERVICE_UID = 1000
SERVICE_GID = 1000
CONTAINER_HOME = f"/home/{SERVICE_USER}"
CONTAINER_KNOWN_HOSTS = "/etc/ssh/ssh_known_hosts"

KEY_TYPE = "ed25519"
KEY_PREFIX = f"id_{KEY_TYPE}"

LOCAL_CONTEXT_NAME = "local"
LOCAL_DOCKER_SOCKET = "unix:///var/run/docker.sock"
WINDOWS_DOCKER_PIPE = "npipe:////./pipe/docker_engine"
MIN_DOCKER_CLIENT_VERSION = "19.03"

SYNC_IMAGE = "workstation-rsync"
SYNC_DOCKERFILE = "FROM alpine:3.20\nRUN apk add --no-cache rsync\n"

DOCKER_SETUP_DIR = "docker_setup"
SIM_DESIGN_FILE = "inputs/sim_design.yaml"

METADATA_DIR = ".workstation/sessions"
METADATA_FILE_MODE = 0o600
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644
SSH_DIR_MODE = 0o700

POLL_INTERVAL_SECONDS = 5.0
POLL_MAX_ATTEMPTS = 24
OPERATION_TIMEOUT_SECONDS = 180.0
SSH_CONNECT_TIMEOUT_SECONDS = 10
BOOTSTRAP_ATTEMPTS = 2

HIGH_COMPUTE_LIMITS = ("--cpus", "32", "--memory", "384g")

BOOTSTRAP_MARKER = "WORKSTATION_KEY_INSTALLED"
GIT_HOST = "github.com"
