import argparse
import os
import sys

from dotenv import load_dotenv

from logship.exceptions import ConfigurationError, LogShipError, ValidationError
from logship.storage.utils.config import DEFAULT_API_ENDPOINT, UploadConfig
from logship.utils.validation import validate_inputs

load_dotenv()

OUTPUT_KEYS = (
    'upload_status',
    'files_uploaded',
    's3_url',
    'notification_status',
    'analysis_id',
    'analysis_url',
)


def write_outputs(outputs: dict, path: str | None = None) -> None:
    """Append outputs as key=value lines to GITHUB_OUTPUT, when set."""
    path = path or os.getenv('GITHUB_OUTPUT')
    if not path:
        return
    with open(path, 'a') as f:
        for key in OUTPUT_KEYS:
            f.write(f"{key.replace('_', '-')}={outputs.get(key, '')}\n")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Upload CI workflow logs to object storage")
    parser.add_argument("--run-id", default=os.getenv("GITHUB_RUN_ID"))
    parser.add_argument("--api-endpoint", default=None)
    parser.add_argument("--api-key", default=os.getenv("LOGSHIP_API_KEY"))
    parser.add_argument("--github-token", default=os.getenv("GITHUB_TOKEN"))

    parser.add_argument("--retry-attempts", type=int, default=3)
    parser.add_argument("--retry-delay", type=float, default=2.0, help="Initial retry delay in seconds")
    parser.add_argument("--path-prefix", default=None)

    parser.add_argument("--consolidated", action="store_true")
    parser.add_argument("--include-successful", action="store_true")

    parser.add_argument("--config", default="configs/upload.yaml")
    parser.add_argument("--log-dir", default=os.getenv("LOGSHIP_LOG_DIR", "logs/logship"))
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args(argv)

    config = UploadConfig(args.config)
    try:
        inputs = validate_inputs(
            api_key=args.api_key,
            api_endpoint=args.api_endpoint or config.api_endpoint or DEFAULT_API_ENDPOINT,
            github_token=args.github_token,
            run_id=args.run_id,
            retry_attempts=args.retry_attempts,
            retry_delay=args.retry_delay,
            path_prefix=args.path_prefix or config.path_prefix
        )
    except ValidationError as e:
        parser.error(f"--{e.field}: {e}" if e.field else str(e))
    except ConfigurationError as e:
        parser.error(str(e))

    from logship.storage.app import UploadApp

    try:
        app = UploadApp(
            inputs,
            config=config,
            consolidated=args.consolidated,
            include_successful=args.include_successful,
            log_dir=args.log_dir,
            verbose=args.verbose
        )
    except ConfigurationError as e:
        parser.error(str(e))

    try:
        outputs = app.run()
    except LogShipError as e:
        app.logger.error(f"Log upload failed: {e}")
        write_outputs(app.outputs)
        return 1
    finally:
        app.close()

    write_outputs(outputs)
    return 0


if __name__ == "__main__":
    sys.exit(main())
