# ventasync/version.py

SERVICE_NAME = "ventasync"
SERVICE_VERSION = "0.1.0"


def version_payload(api_url: str = "") -> dict:
    """Used by the /version endpoint and `ventasync --version`."""
    return {
        "service": f"{SERVICE_NAME}:{SERVICE_VERSION}",
        "service_version": SERVICE_VERSION,
        "api_url": api_url,
    }
