"""Version information for POS Bridge."""

VERSION = "1.0.0"
SERVICE_NAME = "bc-bridge-pos"
