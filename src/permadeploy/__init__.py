"""permadeploy - Incremental static site deployment to permanent storage."""

__version__ = "0.1.0"

# Directory and file constants
PD_DIR = ".permadeploy"
CONFIG_FILE = "config.json"
MANIFEST_FILE = "deployment-manifest.json"
OBJECTS_DIR = "objects"
PUBLISHED_MANIFEST_NAME = "manifest.json"
