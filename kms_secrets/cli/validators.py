"""Input validation for CLI arguments."""
import re
import sys

# DNS-1123 subdomain, as required for namespaces and object names
_NAME_PATTERN = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$')
_DATA_KEY_PATTERN = re.compile(r'^[-._a-zA-Z0-9]+$')


def validate_resource_name(name: str, what: str = "name") -> None:
    """
    Validate a Kubernetes namespace or object name.

    Args:
        name: Name to validate
        what: Label used in the error message

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print(f"Error: {what} cannot be empty", file=sys.stderr)
        sys.exit(2)

    if len(name) > 253 or not _NAME_PATTERN.match(name):
        print(f"Error: Invalid {what} '{name}'", file=sys.stderr)
        print("\nMust be lowercase letters, digits, '-' and '.', starting and ending", file=sys.stderr)
        print("with a letter or digit, at most 253 characters.", file=sys.stderr)
        sys.exit(2)


def validate_data_key(key: str) -> None:
    """
    Validate a Secret data key.

    Kubernetes allows only: [-._a-zA-Z0-9]

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not key or not _DATA_KEY_PATTERN.match(key):
        print(f"Error: Invalid data key '{key}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, '-', '_' and '.'", file=sys.stderr)
        print("\nExamples of valid keys:", file=sys.stderr)
        print("  ✓ API_KEY", file=sys.stderr)
        print("  ✓ tls.crt", file=sys.stderr)
        print("\nExamples of invalid keys:", file=sys.stderr)
        print("  ✗ api key (contains space)", file=sys.stderr)
        print("  ✗ db/password (contains slash)", file=sys.stderr)
        sys.exit(2)
