"""Project-wide constants for the studio content repository."""

GIT_ROOT = ".git"
FOLDER_PLACEHOLDER = ".keep"

DEFAULT_CONFIG_LOCATION = "crafter/studio/studio-config.yaml"

# Configuration keys ("/" is the hierarchy delimiter, so dots are literal).
STUDIO_CONFIG_OVERRIDE_CONFIG = "studio.config.override"
REPO_BASE_PATH = "studio.repo.basePath"
SITES_REPOS_PATH = "studio.repo.sitesPath"
SANDBOX_PATH = "studio.repo.sandboxPath"
PUBLISHED_PATH = "studio.repo.publishedPath"
GLOBAL_REPO_PATH = "studio.repo.globalPath"
BLUE_PRINTS_PATH = "studio.repo.blueprintsPath"
SITE_UUID_FILENAME = "studio.repo.siteUuidFilename"
SECURITY_SESSION_TIMEOUT = "studio.security.sessionTimeout"
SECURITY_IGNORE_RENEW_TOKEN_URLS = "studio.security.ignoreRenewTokenUrls"
SECURITY_SESSION_TOKEN_SECRET = "studio.security.sessionTokenSecret"
SECURITY_USERS = "studio.security.users"
AUTHENTICATION_CHAIN_CONFIG = "studio.security.authenticationChain"
AUTHENTICATION_CHAIN_PROVIDER_TYPE = "type"
AUTHENTICATION_CHAIN_PROVIDER_ENABLED = "enabled"
AUTHENTICATION_CHAIN_PROVIDER_USERNAME_HEADER = "usernameHeader"
AUTHENTICATION_CHAIN_PROVIDER_URL = "url"

DEFAULT_SITE_UUID_FILENAME = "site_uuid.txt"
SITE_UUID_FILE_COMMENT = "# This file is generated by Crafter Studio; do not modify."
DEFAULT_SESSION_TIMEOUT_SECONDS = 1800

# Session attributes populated by the authentication filter.
SESSION_USERNAME_ATTRIBUTE = "studio_username"
SESSION_TOKEN_ATTRIBUTE = "studio_session_token"

RENEW_TOKEN_API_PREFIX = "/api/1"
RANDOM_PASSWORD_LENGTH = 16

MAJOR_VERSION_TRAILER = "Major-Version"
SAVE_FILE_MESSAGE = "Save file {path}"
DELETE_CONTENT_MESSAGE = "Delete content {path}"
CREATE_FOLDER_MESSAGE = "Create folder {path}"
COPY_CONTENT_MESSAGE = "Copy {source} to {target}"
MOVE_CONTENT_MESSAGE = "Move {source} to {target}"
RENAME_FOLDER_MESSAGE = "Rename folder {source} to {target}"
INITIAL_COMMIT_MESSAGE = "Create site {site} from blueprint {blueprint}"
REVERT_MESSAGE = "Revert {path} to {version}"

INDEX_LOCK_MARKER = "index.lock"
INDEX_CONFLICT_RETRIES = 1
INDEX_CONFLICT_RETRY_DELAY_SECONDS = 0.2
