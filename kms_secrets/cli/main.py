"""CLI entrypoint for kms-secrets."""
import sys
import argparse
import base64
import logging
from pathlib import Path

import yaml

from .validators import validate_data_key, validate_resource_name

VERSION = "0.1.0"

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _set_verbosity(verbose: int) -> None:
    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose == 1:
        logging.getLogger().setLevel(logging.INFO)


def cmd_version(args):
    """Show version information."""
    print(f"kms-secrets {VERSION}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from kms_secrets.secrets.domains.preferences import set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show the config file in use and its source."""
    import os
    from kms_secrets.secrets.domains.config_loader import CONFIG_ENV_VAR, default_config_path
    from kms_secrets.secrets.domains.preferences import get_preference

    env_path = os.getenv(CONFIG_ENV_VAR)
    config_path_pref = get_preference("config_path")

    if env_path:
        print(f"Config path: {env_path}")
        print(f"Source: environment ({CONFIG_ENV_VAR})")
    elif config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            print(f"Config path: {config_path}")
        else:
            print(f"Config path (from preference, but file not found): {config_path}")
        print("Source: preference")
    elif default_config_path().exists():
        print(f"Config path: {default_config_path()}")
        print("Source: default")
    else:
        print(f"Config path: {default_config_path()}")
        print("Source: default (file not found, built-in defaults apply)")


def cmd_config_clear(args):
    """Clear config path preference."""
    from kms_secrets.secrets.domains.config_loader import default_config_path
    from kms_secrets.secrets.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {default_config_path()}")


def cmd_reconcile(args):
    """Run one reconciliation pass for a KMSSecret."""
    from kms_secrets.secrets.domains.config_loader import load_config
    from kms_secrets.secrets.domains.errors import ReconcileError
    from kms_secrets.secrets.workflows.reconcile import build_reconciler

    validate_resource_name(args.namespace, "namespace")
    validate_resource_name(args.name, "name")

    reconciler = build_reconciler(load_config())
    try:
        result = reconciler.reconcile(args.namespace, args.name)
    except ReconcileError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.__cause__ is not None:
            print(f"Cause: {e.__cause__}", file=sys.stderr)
        sys.exit(1)

    print(f"KMSSecret {args.namespace}/{args.name}: {result.value}")


def cmd_run(args):
    """Start the operator."""
    from kms_secrets.operator.handlers import run_operator
    from kms_secrets.secrets.domains.config_loader import load_config

    namespace = args.namespace
    if namespace is None:
        namespace = load_config()["operator"]["namespace"]
    if namespace is not None:
        validate_resource_name(namespace, "namespace")

    run_operator(namespace)


def cmd_encrypt(args):
    """Encrypt a value with KMS and print it, or a KMSSecret manifest carrying it."""
    from kms_secrets.secrets.domains.config_loader import load_config
    from kms_secrets.secrets.domains.kms_client import AWSKMSClient, KMSError
    from kms_secrets.secrets.domains.models import API_VERSION, KIND

    validate_data_key(args.key)
    if args.name:
        validate_resource_name(args.name, "name")
        validate_resource_name(args.namespace, "namespace")

    value = sys.stdin.read() if args.value == "-" else args.value
    if not value:
        print("Error: Value cannot be empty", file=sys.stderr)
        sys.exit(2)

    client = AWSKMSClient(profile=load_config()["aws"]["profile"])
    try:
        ciphertext = client.encrypt(args.region, args.key_id, value.encode("utf-8"))
    except KMSError as e:
        print(f"Error: KMS encrypt failed: {e}", file=sys.stderr)
        sys.exit(1)

    encoded = base64.b64encode(ciphertext).decode("ascii")
    if not args.name:
        print(encoded)
        return

    manifest = {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "metadata": {"name": args.name, "namespace": args.namespace},
        "spec": {
            "region": args.region,
            "encryptedData": {args.key: encoded},
        },
    }
    print(yaml.safe_dump(manifest, default_flow_style=False, sort_keys=False), end="")


def cmd_fingerprint(args):
    """Print the content fingerprint of KEY=VALUE pairs."""
    from kms_secrets.secrets.domains.fingerprint import shasum_data

    data = {}
    for pair in args.pairs:
        if "=" not in pair:
            print(f"Error: Expected KEY=VALUE, got '{pair}'", file=sys.stderr)
            sys.exit(2)
        key, value = pair.split("=", 1)
        validate_data_key(key)
        data[key] = value.encode("utf-8")

    print(shasum_data(data))


def main():
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (cluster access, KMS failure, invalid config, etc.)
        2 - Usage errors (invalid arguments, invalid names, etc.)
    """
    parser = argparse.ArgumentParser(
        prog="kmssecrets",
        description="kms-secrets - materialize KMS-encrypted KMSSecret resources as Kubernetes Secrets",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (cluster access, KMS failure, invalid config, etc.)
  2 - Usage error (invalid arguments, invalid names, etc.)

Environment variables:
  KMS_SECRETS_CONFIG - Path to config file (overrides preference and default)

Configuration:
  Default location: ~/.config/kms-secrets/config.yml
  Custom path: Set with 'kmssecrets config set-path <path>'
  View current: Run 'kmssecrets config show'
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of kms-secrets"
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage kms-secrets configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="""
Set the configuration file path preference.

This stores the absolute path to your config file in:
~/.config/kms-secrets/preferences.json
        """
    )
    config_set_path_parser.add_argument(
        "path",
        help="Path to config file"
    )

    _config_show_parser = config_subparsers.add_parser(
        "show",
        help="Show current config path",
        description="""
Display the configuration file path and its source.

Sources:
  - environment: KMS_SECRETS_CONFIG
  - preference: Path set via 'config set-path'
  - default: ~/.config/kms-secrets/config.yml
        """
    )

    _config_clear_parser = config_subparsers.add_parser(
        "clear",
        help="Clear config path preference",
        description="Remove the config path preference; the default location is used afterwards."
    )

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Reconcile one KMSSecret",
        description="""
Run a single reconciliation pass: decrypt the KMSSecret's encryptedData,
and create or update its Secret if the decrypted content changed.

Prints one of: created, updated, unchanged, not-found.
        """
    )
    reconcile_parser.add_argument("namespace", help="Namespace of the KMSSecret")
    reconcile_parser.add_argument("name", help="Name of the KMSSecret")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the operator",
        description="Watch KMSSecrets and keep their Secrets in sync until interrupted."
    )
    run_parser.add_argument(
        "--namespace",
        help="Watch only this namespace (default: operator.namespace from config, else cluster-wide)"
    )

    # encrypt command
    encrypt_parser = subparsers.add_parser(
        "encrypt",
        help="Encrypt a value with KMS",
        description="""
Encrypt a value with an AWS KMS key and print the base64 ciphertext.

With --name, print a KMSSecret manifest holding the ciphertext under --key
instead, ready for 'kubectl apply -f -'.
        """
    )
    encrypt_parser.add_argument("value", help="Value to encrypt ('-' reads stdin)")
    encrypt_parser.add_argument("--key-id", required=True, help="KMS key ID, ARN or alias")
    encrypt_parser.add_argument("--region", required=True, help="AWS region of the key")
    encrypt_parser.add_argument("--key", default="value", help="Data key in the manifest (default: value)")
    encrypt_parser.add_argument("--name", help="KMSSecret name; prints a manifest when set")
    encrypt_parser.add_argument("--namespace", default="default", help="KMSSecret namespace (default: default)")

    # fingerprint command
    fingerprint_parser = subparsers.add_parser(
        "fingerprint",
        help="Compute a secretsSum",
        description="Print the secretsSum that plaintext KEY=VALUE pairs would produce."
    )
    fingerprint_parser.add_argument("pairs", nargs="*", metavar="KEY=VALUE")

    args = parser.parse_args()
    _set_verbosity(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "config":
            if args.config_command == "set-path":
                cmd_config_set_path(args)
            elif args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "clear":
                cmd_config_clear(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "reconcile":
            cmd_reconcile(args)
        elif args.command == "run":
            cmd_run(args)
        elif args.command == "encrypt":
            cmd_encrypt(args)
        elif args.command == "fingerprint":
            cmd_fingerprint(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
