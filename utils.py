import logging
import os
import re
import subprocess

logger = logging.getLogger(__name__)


def sanitize_name(name: str) -> str:
    """Sanitize a Twingate display name to be a valid Terraform resource name."""
    sanitized = re.sub(r'[\s.]+', '-', name)
    if sanitized and sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def check_terraform_init(working_dir: str = ".") -> bool:
    """Run `terraform init` (or `init -upgrade` if already initialised) in working_dir.  Returns True if successful, False otherwise."""
    try:
        if os.path.exists(os.path.join(working_dir, '.terraform')):
            logger.info("Terraform already initialised in %s. Upgrading...", working_dir)
            result = subprocess.run(["terraform", "init", "-upgrade"], cwd=working_dir, capture_output=True, text=True, check=True)
            logger.debug(result.stdout)
            logger.info("Terraform upgraded successfully.")
        else:
            logger.info("Initialising Terraform in %s...", working_dir)
            result = subprocess.run(["terraform", "init"], cwd=working_dir, capture_output=True, text=True, check=True)
            logger.debug(result.stdout)
            logger.info("Terraform initialised successfully.")
        return True
    except subprocess.CalledProcessError as e:
        logger.error("Error during Terraform initialisation/upgrade: %s", e.stderr)
        return False
    except FileNotFoundError:
        logger.error("Terraform is not installed or not in your PATH.")
        return False


#Copyright (c) 2025 Stephen Agius
#Licensed under the GNU General Public License, version 3.
