from importlib.metadata import PackageNotFoundError, version

PACKAGE_NAME = "hotdog-reload"


def get_version() -> str:
    """Installed package version, or a dev marker when running from a checkout."""
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return "0.0.0-dev"
