"""Version information. Release builds overwrite these values."""

version = "1.0.0"
commit = "n/a"
branch = "n/a"


def version_string() -> str:
    return f"{version} (branch: {branch}, commit: {commit})"
