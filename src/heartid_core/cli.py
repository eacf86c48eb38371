import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .config import TEMPLATE_STORE_PATH, get_template_passphrase
from .constants import LOCKOUT_STATE_FILE
from .data_models import OutcomeKind, SecurityLevel
from .dataset_loader import DatasetLoader
from .decision_engine import AuthenticationEngine
from .exceptions import HeartIdError, TemplateNotFoundError
from .feature_extraction import FeatureExtractor
from .policy import load_policy
from .quality_assessment import SignalQualityValidator
from .secure_storage import AesGcmSealer, FileSecureStorage, load_or_create_salt
from .session import LockoutTracker
from .template_codec import TemplateRepository
from .utils import configure_logging

# Initialize structured logger
logger = structlog.get_logger(__name__)


class HeartIdCLI:
    """Main command-line interface for the HeartID core."""

    def __init__(self) -> None:
        self.parser = self._create_argument_parser()
        self.loader = DatasetLoader()

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="heartid",
            description="HeartID - heart-rate biometric enrollment and authentication",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "--store",
            type=Path,
            default=TEMPLATE_STORE_PATH,
            help=f"Template store directory. Default: {TEMPLATE_STORE_PATH}",
        )

        subparsers = parser.add_subparsers(dest="command", required=True)
        self._add_validate_command(subparsers)
        self._add_extract_command(subparsers)
        self._add_enroll_command(subparsers)
        self._add_authenticate_command(subparsers)
        self._add_identity_command(subparsers, "status", "Show the enrollment state of an identity.")
        self._add_identity_command(subparsers, "delete", "Delete the template of an identity.")

        return parser

    def _add_validate_command(self, subparsers) -> None:
        validate_parser = subparsers.add_parser(
            "validate", help="Assess the signal quality of a sample file."
        )
        validate_parser.add_argument("file", type=Path, help="CSV or JSON sample file.")
        validate_parser.add_argument(
            "--quick",
            action="store_true",
            help="Use the lower quick-check sample floor.",
        )

    def _add_extract_command(self, subparsers) -> None:
        extract_parser = subparsers.add_parser(
            "extract", help="Print the feature vector of a sample file."
        )
        extract_parser.add_argument("file", type=Path, help="CSV or JSON sample file.")

    def _add_enroll_command(self, subparsers) -> None:
        enroll_parser = subparsers.add_parser(
            "enroll", help="Enroll an identity from a sample file."
        )
        enroll_parser.add_argument("identity", help="Identity to enroll.")
        enroll_parser.add_argument("file", type=Path, help="CSV or JSON sample file.")
        enroll_parser.add_argument(
            "--level",
            choices=[level.value for level in SecurityLevel],
            default=None,
            help="Security level of the template. Default: HEARTID_SECURITY_LEVEL.",
        )
        enroll_parser.add_argument(
            "--replace",
            action="store_true",
            help="Replace an existing enrollment.",
        )

    def _add_authenticate_command(self, subparsers) -> None:
        auth_parser = subparsers.add_parser(
            "authenticate",
            help="Authenticate an identity; each file is one attempt in a single session.",
        )
        auth_parser.add_argument("identity", help="Identity to authenticate.")
        auth_parser.add_argument(
            "files", type=Path, nargs="+", help="CSV or JSON sample files, in attempt order."
        )

    def _add_identity_command(self, subparsers, name: str, help_text: str) -> None:
        identity_parser = subparsers.add_parser(name, help=help_text)
        identity_parser.add_argument("identity", help="Identity.")

    def _build_engine(self, store: Path) -> AuthenticationEngine:
        storage = FileSecureStorage(store)
        sealer = AesGcmSealer.from_passphrase(get_template_passphrase(), load_or_create_salt(store))
        # Lockout state is shared by every command run against the store
        tracker = LockoutTracker(
            load_policy().lockout_periods, state_path=Path(store) / LOCKOUT_STATE_FILE
        )
        return AuthenticationEngine(TemplateRepository(storage, sealer), lockout_tracker=tracker)

    @staticmethod
    def _print(payload: Dict[str, Any]) -> None:
        print(json.dumps(payload, indent=2, default=str))

    def _execute_validate_command(self, args: argparse.Namespace) -> int:
        batch = self.loader.load(args.file)
        validator = SignalQualityValidator(load_policy().quality)
        report = validator.quick_check(batch) if args.quick else validator.validate(batch)
        self._print(report.to_dict())
        return 0 if report.is_acceptable else 1

    def _execute_extract_command(self, args: argparse.Namespace) -> int:
        batch = self.loader.load(args.file)
        vector = FeatureExtractor().extract(batch)
        self._print(vector.as_dict())
        return 0

    def _execute_enroll_command(self, args: argparse.Namespace) -> int:
        engine = self._build_engine(args.store)
        batch = self.loader.load(args.file)
        result = engine.complete_enrollment(
            args.identity, batch, security_level=args.level, replace=args.replace
        )
        self._print(result.to_dict())
        return 0 if result.success else 1

    def _execute_authenticate_command(self, args: argparse.Namespace) -> int:
        engine = self._build_engine(args.store)
        batches = self.loader.load_many(args.files)

        outcome = None
        for path, batch in zip(args.files, batches):
            outcome = engine.complete_authentication(args.identity, batch)
            self._print({"file": str(path), **outcome.to_dict()})
            # Stop once no open session remains
            session = engine.active_session(args.identity)
            if session is None or session.is_terminal:
                break

        engine.end_session(args.identity)
        return 0 if outcome is not None and outcome.kind is OutcomeKind.APPROVED else 1

    def _execute_status_command(self, args: argparse.Namespace) -> int:
        engine = self._build_engine(args.store)
        try:
            template = engine.repository.load(args.identity)
        except TemplateNotFoundError:
            self._print({"identity_id": args.identity, "state": engine.state(args.identity).value})
            return 1

        self._print(
            {
                "identity_id": args.identity,
                "state": engine.state(args.identity).value,
                "template_id": template.template_id,
                "security_level": template.security_level.value,
                "created_at": template.created_at.isoformat(),
                "authentication_count": template.authentication_count,
                "last_authenticated_at": (
                    template.last_authenticated_at.isoformat()
                    if template.last_authenticated_at
                    else None
                ),
            }
        )
        return 0

    def _execute_delete_command(self, args: argparse.Namespace) -> int:
        engine = self._build_engine(args.store)
        if not engine.repository.exists(args.identity):
            print(f"[ERROR] No enrollment found for '{args.identity}'", file=sys.stderr)
            return 1
        engine.delete_enrollment(args.identity)
        self._print({"identity_id": args.identity, "deleted": True})
        return 0

    def run_from_args(self, args_list: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments."""
        args = None
        try:
            args = self.parser.parse_args(args_list)
            handler = getattr(self, f"_execute_{args.command}_command", None)
            if handler is None:
                self.parser.print_help()
                return 1
            return handler(args)
        except HeartIdError as e:
            logger.error("Command failed", command=getattr(args, "command", None), **e.to_dict())
            print(f"\n[ERROR] {e.message}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.", file=sys.stderr)
            return 130


def main() -> int:
    """Main entry point for the CLI."""
    configure_logging()
    cli = HeartIdCLI()
    return cli.run_from_args()


if __name__ == "__main__":
    sys.exit(main())
