import argparse
import getpass
import json
import logging
import os
import re
import sys

from terraform_utils import TerraformVariables, generate_twingate_terraform, write_terraform_files
from twingate_handler import TwingateApiClient, check_provider_availability, get_latest_provider_version
from utils import check_terraform_init

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
BARE_VERSION = re.compile(r"^\d+(\.\d+)*([-+][0-9A-Za-z.-]+)?$")
REMOVE_METHODS = {
    "group": "remove_group",
    "resource": "remove_resource",
    "service": "remove_service_account",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def load_client(args) -> TwingateApiClient:
    """Resolve the network name and API key from options, environment or prompts."""
    network_name = args.account_name
    api_key = os.environ.get("TG_API_KEY")
    if getattr(args, "silent", False):
        if not network_name or not api_key:
            raise ValueError("Silent mode needs --account-name (or TG_ACCOUNT) and TG_API_KEY to be set")
    else:
        network_name = network_name or input("Enter your Twingate network name: ")
        api_key = api_key or getpass.getpass("Enter your Twingate API key: ")
    args.network_name = network_name
    args.api_key = api_key
    return TwingateApiClient(network_name, api_key)


def deploy_terraform(args) -> None:
    output_dir = os.path.abspath(args.output_directory)
    client = load_client(args)
    variables = TerraformVariables(network_name=args.network_name, api_key=args.api_key)

    provider_version = args.provider_version
    if provider_version:
        if BARE_VERSION.match(provider_version):
            check_provider_availability(provider_version)
    else:
        provider_version = get_latest_provider_version()

    tf_content, tf_imports = generate_twingate_terraform(client)
    write_terraform_files(output_dir, tf_content, tf_imports, variables, provider_version)

    if args.initialize and not check_terraform_init(output_dir):
        logger.error("Terraform initialisation failed.  Please check your Terraform installation and configuration.")

    logger.warning("Note: Your Twingate API key has been written into '%s', please take care to keep it secure",
                   os.path.join(output_dir, "twingate.auto.tfvars.json"))
    logger.info("Deploy to '%s' completed. %d resources ready to import.", output_dir, len(tf_imports))


def remove(args) -> None:
    client = load_client(args)
    result = getattr(client, REMOVE_METHODS[args.type])(args.id)
    if args.output_format == "json":
        print(json.dumps(result))
    else:
        logger.info("Removed %s with id '%s'", args.type, args.id)


def interactive(args) -> None:
    """Menu driven mode used when no command is given."""
    actions = {'1': ('Export Terraform', 'deploy'), '2': ('Remove an object', 'remove')}

    while True:
        print("\nChoose an action:")
        for key, (label, _) in actions.items():
            print(f"{key}. {label}")
        print("0. Exit")

        choice = input("Enter the number of the action (or 0 to exit): ")

        if choice == '0':
            print("Exiting.")
            break
        elif choice not in actions:
            print("Invalid choice. Please select a number from the list.")
        elif actions[choice][1] == 'deploy':
            args.output_directory = input("Output directory (default: terraform): ") or "terraform"
            args.initialize = input("Initialise Terraform afterwards? (y/n) ").lower() == "y"
            args.provider_version = None
            deploy_terraform(args)
        else:
            args.type = input(f"Type of object to remove ({', '.join(REMOVE_METHODS)}): ").lower()
            if args.type not in REMOVE_METHODS:
                print(f"Unsupported type: {args.type}")
                continue
            args.id = input(f"Enter the {args.type} id: ")
            args.output_format = "text"
            remove(args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="twingate-tf", description="Manage Twingate and export it as Terraform")
    parser.add_argument("-a", "--account-name", default=os.environ.get("TG_ACCOUNT"), help="Twingate network name")
    parser.add_argument("-l", "--log-level", choices=LOG_LEVELS, type=str.upper,
                        default=os.environ.get("LOG_LEVEL", "INFO"), help="Log level")
    parser.set_defaults(func=interactive)
    commands = parser.add_subparsers(dest="command")

    deploy = commands.add_parser("deploy", help="Deploy Twingate via an infrastructure tool")
    targets = deploy.add_subparsers(dest="target", required=True)
    terraform = targets.add_parser("terraform", help="Deploy Twingate via Terraform")
    terraform.add_argument("-o", "--output-directory", default="terraform", help="Output directory")
    terraform.add_argument("-i", "--initialize", action="store_true", help="Initialize Terraform")
    terraform.add_argument("-s", "--silent", action="store_true", help="Do not prompt for inputs")
    terraform.add_argument("--provider-version", help="Twingate provider version (default: latest on the registry)")
    terraform.set_defaults(func=deploy_terraform)

    remove_cmd = commands.add_parser("remove", help="Remove a group, resource or service account")
    remove_cmd.add_argument("type", choices=list(REMOVE_METHODS))
    remove_cmd.add_argument("id")
    remove_cmd.add_argument("-o", "--output-format", choices=["text", "json"], default="text", help="Output format")
    remove_cmd.set_defaults(func=remove)

    return parser


def main(argv=None) -> int:
    """Main entry point for the Twingate Terraform tool."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        args.func(args)
    except Exception:
        logger.exception("Command failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())


#Copyright (c) 2025 Stephen Agius
#Licensed under the GNU General Public License, version 3.
