#!/usr/bin/env python3
"""
S3 Cloud Bucket Tool

Command line helper for a single S3-compatible bucket: create or delete the
bucket, upload, download or delete one file at a time. Credentials live in a
plain KEY=VALUE file (.env) in the working directory.

Usage:
    s3-cloud config --access-key <KEY>
    s3-cloud config --secret-key <KEY>
    s3-cloud <create|delete> <bucket>
    s3-cloud <send|delete-file|get> <bucket> <path>

Dependencies:
    pip install boto3
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Mapping, NamedTuple, Optional, Protocol, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

ACCESS_KEY = 'ACCESS_KEY'
SECRET_KEY = 'SECRET_KEY'

DEFAULT_CONFIG_FILE = '.env'
DEFAULT_REGION = 'sa-east-1'
DOWNLOAD_FOLDER = 's3-cloud'

BUCKET_ACTIONS = ('create', 'delete', 'send', 'delete-file', 'get')
PATH_ACTIONS = ('send', 'delete-file', 'get')

UNKNOWN_COMMAND = 'Unknown command.'

logger = logging.getLogger('s3_cloud')


class S3CloudError(Exception):
    """Base class for every error this tool reports."""

    exit_code = 1


class UsageError(S3CloudError):
    """A required command line argument is missing or invalid."""

    exit_code = 2


class ConfigError(S3CloudError):
    """Credentials are missing from the config file and the environment."""


class RemoteError(S3CloudError):
    """The storage backend could not be reached or the request failed in transit."""


class UnexpectedStatus(S3CloudError):
    """The backend answered, but not with the status the operation expects."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RESET = '\033[0m'

    @staticmethod
    def red(text: str) -> str:
        """Return text in red color."""
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def green(text: str) -> str:
        """Return text in green color."""
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text: str) -> str:
        """Return text in yellow color."""
        return f"{Colors.YELLOW}{text}{Colors.RESET}"


def setup_logging(debug: bool = False) -> logging.Logger:
    """Setup logging configuration for the tool logger."""
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.handlers.clear()

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


class Credentials(NamedTuple):
    access_key: str
    secret_key: str


class ConfigStore:
    """Credential file made of KEY=VALUE lines.

    Changes made with ``set`` stay in memory until ``save`` is called.
    """

    def __init__(self, path: str = DEFAULT_CONFIG_FILE):
        self.path = Path(path)
        self.values: Dict[str, str] = {}
        self.dirty = False

    def load(self) -> 'ConfigStore':
        """Read the config file, creating it with empty credentials if missing.

        Returns:
            The store itself, so ``ConfigStore(path).load()`` can be chained
        """
        if not self.path.exists():
            logger.debug(f"Creating config file: {self.path}")
            with open(self.path, 'w') as f:
                f.write(f"{ACCESS_KEY}=\n")
                f.write(f"{SECRET_KEY}=\n")

        self.values = {}
        with open(self.path, 'r') as f:
            for line in f.read().splitlines():
                if not line.strip():
                    continue
                key, _, value = line.partition('=')
                self.values[key] = value

        self.dirty = False
        logger.debug(f"Loaded {len(self.values)} config entries from {self.path}")
        return self

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value
        self.dirty = True

    def save(self) -> None:
        """Write every entry back to the config file, replacing its contents."""
        contents = ''.join(f"{key}={value}\n" for key, value in self.values.items())
        with open(self.path, 'w') as f:
            f.write(contents)
        self.dirty = False
        logger.debug(f"Saved {len(self.values)} config entries to {self.path}")

    def credentials(self, environ: Optional[Mapping[str, str]] = None) -> Credentials:
        """Resolve the access/secret key pair.

        Variables already present in the environment win over the file.

        Args:
            environ: Environment mapping (defaults to ``os.environ``)

        Returns:
            Credentials pair

        Raises:
            ConfigError: if either key is absent or empty
        """
        if environ is None:
            environ = os.environ

        resolved = {}
        missing = []
        for key in (ACCESS_KEY, SECRET_KEY):
            value = environ.get(key) or self.get(key)
            if not value:
                missing.append(key)
            resolved[key] = value

        if missing:
            raise ConfigError(
                f"Missing credentials: {', '.join(missing)}. "
                f"Set them with 's3-cloud config --access-key <KEY>' / '--secret-key <KEY>'"
            )

        return Credentials(resolved[ACCESS_KEY], resolved[SECRET_KEY])


class ObjectStore(Protocol):
    """Storage backend operations for a single bucket.

    Every call answers with the HTTP status code of the response; object
    calls also return the response body.
    """

    name: str

    def head_object(self, path: str) -> Tuple[bytes, int]:
        raise NotImplementedError

    def create_bucket(self) -> int:
        raise NotImplementedError

    def delete_bucket(self) -> int:
        raise NotImplementedError

    def put_object(self, path: str, data: bytes) -> Tuple[bytes, int]:
        raise NotImplementedError

    def delete_object(self, path: str) -> Tuple[bytes, int]:
        raise NotImplementedError

    def get_object(self, path: str) -> Tuple[bytes, int]:
        raise NotImplementedError


def object_key(path: str) -> str:
    """Convert an object path ("/dir/file.txt") into an S3 key ("dir/file.txt")."""
    return path.lstrip('/')


def tls_verify_setting(environ: Optional[Mapping[str, str]] = None):
    """Work out the ``verify`` argument for the boto3 client from the environment."""
    if environ is None:
        environ = os.environ

    verify_ssl = environ.get('AWS_VERIFY_SSL', 'true').lower() == 'true'
    ca_bundle = environ.get('S3_CA_BUNDLE')

    if not verify_ssl:
        logger.debug("SSL verification is disabled")
        if ca_bundle:
            logger.warning(f"S3_CA_BUNDLE is set ({ca_bundle}) but SSL verification is disabled - CA bundle will be ignored")
        return False

    if ca_bundle:
        logger.debug(f"SSL verification is enabled with custom CA Bundle: {ca_bundle}")
        return ca_bundle

    return True


def skip_region_redirect(context, **kwargs):
    """Mark the request as already redirected so botocore returns the 301 as is."""
    context['s3_redirected'] = True


class BotoBucket:
    """ObjectStore backed by a boto3 S3 client using path-style addressing."""

    def __init__(self, name: str, credentials: Credentials, region: str = DEFAULT_REGION,
                 endpoint_url: Optional[str] = None, verify=True, client=None):
        """Build the handle for one bucket.

        Args:
            name: Bucket name
            credentials: Access/secret key pair used to sign requests
            region: Bucket region
            endpoint_url: S3-compatible endpoint, None for AWS
            verify: TLS verification flag or CA bundle path
            client: Pre-built S3 client (tests pass a stubbed one)
        """
        self.name = name
        self.region = region

        if client is None:
            client_config = {
                'aws_access_key_id': credentials.access_key,
                'aws_secret_access_key': credentials.secret_key,
                'region_name': region,
                'verify': verify,
                'config': Config(signature_version='s3v4', s3={'addressing_style': 'path'}),
            }
            if endpoint_url:
                client_config['endpoint_url'] = endpoint_url
                logger.debug(f"Using S3 endpoint: {endpoint_url}")

            try:
                client = boto3.client('s3', **client_config)
            except BotoCoreError as e:
                raise RemoteError(f"Failed to initialize S3 client: {e}") from e

        # A 301 on the bucket probe means the name lives in another region;
        # botocore would otherwise follow it with a second request.
        client.meta.events.register('before-parameter-build.s3.HeadBucket', skip_region_redirect)
        self.client = client

    def _call(self, operation: str, **params) -> Tuple[Dict, int]:
        """Invoke a client operation and return the response with its HTTP status.

        Error responses are returned, not raised; only transport failures raise.
        """
        logger.debug(f"{operation} {params.get('Key', '')} on bucket {self.name}")
        try:
            response = getattr(self.client, operation)(Bucket=self.name, **params)
        except ClientError as e:
            response = e.response
        except ParamValidationError as e:
            raise UsageError(f"Invalid request for bucket {self.name}: {e}") from e
        except BotoCoreError as e:
            raise RemoteError(f"{operation} failed for bucket {self.name}: {e}") from e

        status = response['ResponseMetadata']['HTTPStatusCode']
        logger.debug(f"{operation} answered with status {status}")
        return response, status

    def head_object(self, path: str) -> Tuple[bytes, int]:
        key = object_key(path)
        if not key:
            _, status = self._call('head_bucket')
        else:
            _, status = self._call('head_object', Key=key)
        return b'', status

    def create_bucket(self) -> int:
        params = {}
        if self.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
        _, status = self._call('create_bucket', **params)
        return status

    def delete_bucket(self) -> int:
        _, status = self._call('delete_bucket')
        return status

    def put_object(self, path: str, data: bytes) -> Tuple[bytes, int]:
        _, status = self._call('put_object', Key=object_key(path), Body=data)
        return b'', status

    def delete_object(self, path: str) -> Tuple[bytes, int]:
        _, status = self._call('delete_object', Key=object_key(path))
        return b'', status

    def get_object(self, path: str) -> Tuple[bytes, int]:
        response, status = self._call('get_object', Key=object_key(path))
        body = response.get('Body')
        if body is None:
            return b'', status
        try:
            return body.read(), status
        except BotoCoreError as e:
            raise RemoteError(f"Failed to read {path} from bucket {self.name}: {e}") from e


class BucketCommands:
    """Bucket-mode actions, one remote operation each."""

    def __init__(self, store: ObjectStore, download_root: Optional[Path] = None):
        self.store = store
        self._download_root = download_root

    @property
    def download_root(self) -> Path:
        """Folder that receives downloaded files (``~/s3-cloud`` by default)."""
        if self._download_root is None:
            try:
                home = Path.home()
            except RuntimeError as e:
                raise OSError(f"Could not resolve home directory: {e}") from e
            self._download_root = home / DOWNLOAD_FOLDER
        return self._download_root

    def run(self, action: str, path: Optional[str] = None) -> None:
        """Dispatch one bucket action.

        Args:
            action: One of BUCKET_ACTIONS
            path: File path for send/delete-file/get
        """
        if action == 'create':
            self.create_bucket()
        elif action == 'delete':
            self.delete_bucket()
        elif action == 'send':
            self.send_file(path)
        elif action == 'delete-file':
            self.delete_file(path)
        elif action == 'get':
            self.get_file(path)
        else:
            raise UsageError(f"Unsupported bucket action: {action}")

    def create_bucket(self) -> None:
        """Create the bucket unless it already exists.

        Raises:
            UnexpectedStatus: name registered elsewhere, creation refused or an unknown probe status
        """
        _, status = self.store.head_object('/')

        if status == 404:
            create_status = self.store.create_bucket()
            if create_status != 200:
                raise UnexpectedStatus(f"Possible error creating the bucket (status {create_status}).", create_status)
            print(Colors.green("Bucket created successfully!"))
        elif status == 200:
            print(Colors.yellow("Bucket already exists."))
        elif status == 301:
            raise UnexpectedStatus("Bucket name already registered.", status)
        else:
            raise UnexpectedStatus(f"Unknown error (status {status}).", status)

    def delete_bucket(self) -> None:
        status = self.store.delete_bucket()
        if status != 204:
            raise UnexpectedStatus("Possible error deleting the bucket.", status)
        print(Colors.green("Bucket deleted successfully."))

    def send_file(self, file_path: str) -> None:
        """Upload a local file, read fully into memory, to ``/<file_path>``."""
        with open(file_path, 'rb') as f:
            data = f.read()

        logger.debug(f"Uploading {len(data)} bytes from {file_path}")
        _, status = self.store.put_object('/' + file_path, data)

        if status != 200:
            raise UnexpectedStatus("Possible error uploading the file to the cloud!", status)
        print(Colors.green("File uploaded to the cloud successfully!"))

    def delete_file(self, file_path: str) -> None:
        _, status = self.store.delete_object('/' + file_path)
        if status != 204:
            raise UnexpectedStatus(f"Possible error deleting the file from the cloud! (status {status})", status)
        print(Colors.green("File deleted from the cloud successfully!"))

    def download_path(self, file_path: str) -> Path:
        """Map an object path to its destination inside the download folder."""
        root = self.download_root
        destination = root / file_path.lstrip('/')
        resolved_root = os.path.realpath(root)
        resolved = os.path.realpath(destination)
        if os.path.commonpath([resolved_root, resolved]) != resolved_root or resolved == resolved_root:
            raise UsageError(f"Download path escapes {root}: {file_path}")
        return destination

    def get_file(self, file_path: str) -> Path:
        """Download an object into the download folder.

        Nothing is written unless the backend answers 200.

        Returns:
            Path of the written file
        """
        destination = self.download_path(file_path)

        data, status = self.store.get_object('/' + file_path)
        if status != 200:
            raise UnexpectedStatus(f"Possible error downloading the file from the cloud! (status {status})", status)

        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, 'wb') as f:
            f.write(data)

        print(Colors.green(f"File downloaded to {destination}"))
        return destination


def next_arg(params: List[str], what: str) -> str:
    """Pop the next positional argument or fail with a UsageError naming it."""
    if not params:
        raise UsageError(f"Missing required argument: {what}")
    return params.pop(0)


def run_config(store: ConfigStore, params: List[str]) -> int:
    """Handle ``config --access-key KEY`` / ``config --secret-key KEY``."""
    flag = next_arg(params, 'config flag (--access-key or --secret-key)')

    if flag == '--access-key':
        store.set(ACCESS_KEY, next_arg(params, 'access key value'))
    elif flag == '--secret-key':
        store.set(SECRET_KEY, next_arg(params, 'secret key value'))
    else:
        print(UNKNOWN_COMMAND)
        return 0

    if store.dirty:
        store.save()
    logger.info(f"Configuration saved to {store.path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='s3-cloud',
        description='Manage one S3-compatible bucket and transfer single files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store credentials in ./.env
  s3-cloud config --access-key AKIA...
  s3-cloud config --secret-key ...

  # Bucket lifecycle
  s3-cloud create my-bucket
  s3-cloud delete my-bucket

  # File transfer (downloads land in ~/s3-cloud)
  s3-cloud send my-bucket notes.txt
  s3-cloud get my-bucket notes.txt
  s3-cloud delete-file my-bucket notes.txt

Environment Variables:
  ACCESS_KEY / SECRET_KEY - Override the credentials stored in the config file
  AWS_DEFAULT_REGION      - Bucket region (default: sa-east-1)
  S3_ENDPOINT             - S3-compatible endpoint URL (optional)
  AWS_VERIFY_SSL          - Verify SSL certificates (default: true)
  S3_CA_BUNDLE            - Path to CA certificate bundle (optional)
  DEBUG                   - Enable debug mode (true/false, default: false)

Global options (--debug, --config-file, --region, --endpoint-url) must come
before the action; anything after it is passed to the action.
        """
    )

    parser.add_argument('--debug', action='store_true', help='Enable debug mode with verbose output')
    parser.add_argument('--config-file', default=DEFAULT_CONFIG_FILE,
                        help=f'Credential file (default: {DEFAULT_CONFIG_FILE})')
    parser.add_argument('--region', help=f'Bucket region (default: $AWS_DEFAULT_REGION or {DEFAULT_REGION})')
    parser.add_argument('--endpoint-url', help='S3-compatible endpoint URL (default: $S3_ENDPOINT)')
    parser.add_argument('action', help=f"config, {', '.join(BUCKET_ACTIONS)}")
    parser.add_argument('params', nargs=argparse.REMAINDER, help='Action arguments')

    return parser


def debug_enabled(flag: bool) -> bool:
    if flag:
        return True
    return os.getenv('DEBUG', 'false').lower() in ('true', '1', 'yes', 'on')


def open_bucket(bucket_name: str, store: ConfigStore, args: argparse.Namespace) -> BotoBucket:
    """Build the bucket handle from the stored credentials and client settings."""
    credentials = store.credentials()
    region = args.region or os.getenv('AWS_DEFAULT_REGION') or DEFAULT_REGION
    endpoint_url = args.endpoint_url or os.getenv('S3_ENDPOINT')

    logger.debug(f"Bucket: {bucket_name}")
    logger.debug(f"Region: {region}")
    logger.debug(f"Access Key: {credentials.access_key[:8]}***")

    return BotoBucket(bucket_name, credentials, region=region,
                      endpoint_url=endpoint_url, verify=tls_verify_setting())


def main(argv: Optional[List[str]] = None) -> int:
    """Parse the command line, run one action and return the exit code."""
    args = build_parser().parse_args(argv)
    debug_mode = debug_enabled(args.debug)
    setup_logging(debug_mode)

    params = list(args.params)

    try:
        if args.action == 'config':
            store = ConfigStore(args.config_file).load()
            return run_config(store, params)

        if args.action not in BUCKET_ACTIONS:
            print(UNKNOWN_COMMAND)
            return 0

        bucket_name = next_arg(params, 'bucket name')
        path = next_arg(params, 'file path') if args.action in PATH_ACTIONS else None
        if params:
            logger.warning(f"Ignoring extra arguments: {' '.join(params)}")

        store = ConfigStore(args.config_file).load()
        commands = BucketCommands(open_bucket(bucket_name, store, args))
        commands.run(args.action, path)
        return 0

    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except UnexpectedStatus as e:
        print(Colors.red(str(e)))
        logger.debug(f"Unexpected status {e.status}")
        return e.exit_code
    except S3CloudError as e:
        logger.error(Colors.red(f"ERROR: {e}"))
        return e.exit_code
    except OSError as e:
        logger.error(Colors.red(f"ERROR: {e}"))
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}")
        if debug_mode:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
