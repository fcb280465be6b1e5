"""
Constants and configuration values for Releasekeeper.

This module contains all hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

# Application identity
APP_NAME = "releasekeeper"
DEFAULT_PRODUCT_ID = "terasology"
CONFIG_FILE_NAME = "releasekeeper.yaml"
GAMES_DIR_NAME = "games"

# Build server (Jenkins) endpoints
LEGACY_JENKINS_BASE_URL = "http://jenkins.terasology.org/"
JENKINS_BASE_URL = "http://jenkins.terasology.io/teraorg/job/Terasology/"

# Legacy job names keyed by (profile name, channel name)
LEGACY_JENKINS_JOBS = {
    ("ENGINE", "NIGHTLY"): "Terasology",
    ("ENGINE", "STABLE"): "TerasologyStable",
    ("FULL", "NIGHTLY"): "DistroOmega",
    ("FULL", "STABLE"): "DistroOmegaRelease",
}
# Legacy distribution jobs are triggered by the engine jobs of the same channel
LEGACY_JENKINS_DOWNSTREAM_PROFILES = frozenset({"FULL"})

# Current server job segments
JENKINS_PROFILE_JOBS = {
    "MINIMAL": "Iota",
    "ENGINE": "Terasology",
    "FULL": "Omega",
}
JENKINS_CHANNEL_JOBS = {
    "STABLE": "master",
    "NIGHTLY": "develop",
}

LEGACY_JENKINS_API_FILTER = (
    "api/json?tree="
    "builds["
    "actions[causes[upstreamBuild]]{0},"
    "number,"
    "timestamp,"
    "result,"
    "artifacts[fileName,relativePath],"
    "url,"
    "changeSet[items[msg]]],"
    "upstreamProjects[name]"
)
JENKINS_API_FILTER = (
    "api/json?tree="
    "builds["
    "number,"
    "timestamp,"
    "result,"
    "artifacts[fileName,relativePath],"
    "url,"
    "changeSet[items[msg]]],"
    "upstreamProjects[name]"
)
UPSTREAM_CHANGELOG_API_FILTER = (
    "api/json?tree=actions[causes[upstreamProject,upstreamBuild]]{0},changeSet[items[msg]]"
)
JENKINS_ARTIFACT_SEGMENT = "artifact/"
JENKINS_ACCEPTED_RESULTS = frozenset({"SUCCESS", "UNSTABLE"})
MAX_UPSTREAM_DEPTH = 3

# Artifact names
GAME_ARCHIVE_PATTERN = r"Terasology.*zip"
VERSION_INFO_PATTERN = r"versionInfo\.properties"
VERSION_INFO_DISPLAY_KEY = "displayVersion"
VERSION_INFO_ENGINE_KEY = "engineVersion"

# Hosted releases (GitHub)
GITHUB_API_BASE = "https://api.github.com/repos"
DEFAULT_GITHUB_REPOSITORY = "MovingBlocks/Terasology"
GITHUB_MAX_PER_PAGE = 100

# Network timeouts (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_REQUEST_TIMEOUT = 30
DOWNLOAD_READ_TIMEOUT = 300

# Transport retries for catalog reads only; archive transfers never retry
CATALOG_CONNECT_RETRIES = 2
CATALOG_BACKOFF_FACTOR = 0.3
CATALOG_RETRY_STATUSES = (502, 503, 504)

# Download settings
DEFAULT_CHUNK_SIZE = 8192
PART_SUFFIX = ".part"
ZIP_EXTENSION = ".zip"
INSTALL_MARKER_FILE = ".release.json"
EXTRACT_TEMP_PREFIX = ".extract-"

# First build number shipping the new binary format, keyed by (profile, channel).
# Legacy build-server numbering; later servers only ever produced compatible builds.
COMPATIBLE_BUILD_THRESHOLDS = {
    ("FULL", "STABLE"): 38,
    ("FULL", "NIGHTLY"): 1104,
    ("ENGINE", "STABLE"): 83,
    ("ENGINE", "NIGHTLY"): 2318,
}

# Logging configuration
LOGGER_NAME = "releasekeeper"
LOG_LEVEL_ENV_VAR = "RELEASEKEEPER_LOG_LEVEL"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "releasekeeper.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5
