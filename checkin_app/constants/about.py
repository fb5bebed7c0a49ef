"""Static metadata describing the check-in service."""

APP_NAME = "ClassCheck"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "ClassCheck runs classroom check-in sessions: teachers open attendance with a code, "
    "students check in from their phones, and a live Q&A channel broadcasts one question at a time."
)
