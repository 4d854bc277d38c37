#!/usr/bin/env python3
"""Enroll this device with an overlay network controller using an enrollment JWT."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from device_enrollment.lib.config import EnrollmentConfig
from device_enrollment.lib.enroller import Enroller
from device_enrollment.lib.enrollment_token import parse_token
from device_enrollment.lib.errors import EnrollmentError
from device_enrollment.lib.logging_config import setup_logger
from device_enrollment.lib.models import EnrollmentRequest, EnrollmentResult


def write_identity(result: EnrollmentResult, output_path: Path) -> Path:
    """Write the identity config as JSON, readable only by the owner.

    Raises:
        FileExistsError: If ``output_path`` already exists
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(output_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(result.config.to_dict(), f, indent=2)
        f.write("\n")
    return output_path


def main() -> int:
    """Validate the token, enroll, and write the identity config.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(description="Enroll an identity using an enrollment token")
    parser.add_argument("--jwt", type=Path, required=True, help="File containing the enrollment JWT")
    parser.add_argument(
        "--out",
        type=Path,
        help="Output identity config file (default: the JWT path with a .json suffix)",
    )
    parser.add_argument("--key", help="Existing private key file or engine reference")
    parser.add_argument("--cert", type=Path, help="Existing certificate (ca enrollment methods)")
    parser.add_argument("--idname", help="Name for the identity (ca-mutual-named only)")
    parser.add_argument("--ca", type=Path, help="Additional trusted CA bundle (PEM)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logger = setup_logger(logging.DEBUG if args.verbose else logging.INFO)
    output_path = args.out or args.jwt.with_suffix(".json")

    if output_path.exists():
        logger.error("Output file already exists: %s", output_path)
        return 1

    try:
        config = EnrollmentConfig.from_env()
        token = parse_token(args.jwt.read_text(), timeout=config.timeout_seconds)
        logger.info("Token issued by %s (method: %s)", token.issuer, token.method)

        result = Enroller(config).enroll(
            token,
            EnrollmentRequest(key=args.key, cert=args.cert, name=args.idname, ca_override=args.ca),
        )
        write_identity(result, output_path)

        logger.info("Enrolled successfully. Identity config: %s", output_path)
        return 0

    except EnrollmentError as e:
        logger.error("Enrollment failed [%s]: %s", type(e).__name__, e)
        return 1
    except (OSError, ValueError) as e:
        logger.error("Enrollment failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
