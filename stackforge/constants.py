"""
Stackforge Constants

Centralized constants for directory layout, file names and defaults.
"""

# Workspace Layout
CONFIG_DIR = ".sc"
STACKS_DIR = "stacks"
STATE_DIR = "state"
LOGS_DIR = "logs"
PROFILE_FILE_TEMPLATE = "cfg.{profile}.yaml"
DEFAULT_PROFILE = "default"

# Stack Definitions
STACK_DEFINITION_FILE = "server.yaml"
SUPPORTED_SCHEMA_VERSIONS = ("1.0",)

# Secret Files
PLAINTEXT_SECRETS_FILE = "secrets.yaml"
ENCRYPTED_SECRETS_FILE = "secrets.encrypted.yaml"
SECRET_BUNDLE_SCHEMA_VERSION = 1
SECRET_BUNDLE_CIPHER = "rsa-oaep-sha256+chacha20-poly1305"

# Key Material
KEY_TYPES = ("rsa", "ed25519")
DEFAULT_KEY_TYPE = "rsa"
DEFAULT_RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# Orchestrator
DEFAULT_MAX_PARALLEL = 4

# Terraform Provider
TERRAFORM_SUBDIR = "terraform"
TERRAFORM_VARS_FILE = "stackforge.auto.tfvars.json"
TERRAFORM_CANCEL_GRACE_SECONDS = 30
TERRAFORM_POLL_INTERVAL = 0.5

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"
LOG_TIME_FORMAT = "%H-%M-%S"
