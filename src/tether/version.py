"""Application version string."""

APP_VERSION = "0.1.0"
