"""
Configuration loader for DAS API integrity verification

Reads the run configuration from a JSON or YAML file, validates it against
config.schema.json, compiles difference filter regexes once, and returns an
immutable config object shared by all workers.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Pattern, Set, Tuple, Union
from urllib.parse import urlsplit, parse_qsl

import jsonschema
import yaml

from src.comparison.response_differ import ListOrderPolicy
from src.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "config.schema.json"

# Host overrides for CI pipelines that inject endpoints (often with API keys)
REFERENCE_HOST_ENV = "DAS_REFERENCE_HOST"
TESTING_HOST_ENV = "DAS_TESTING_HOST"

DEFAULT_TEST_RETRIES = 20
DEFAULT_NUM_OF_VIRTUAL_USERS = 1
DEFAULT_TEST_DURATION_TIME = 60
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_MAX_PARALLEL_PAIRS = 16
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 5.0


@dataclass(frozen=True)
class IntegrityVerificationConfig:
    """
    Validated, immutable run configuration.

    Attributes:
        reference_host: URL of the trusted provider
        testing_host: URL of the provider under test
        testing_file_path: Path to the test keys file
        test_retries: Max attempts per request (1 = fail on first unsuccessful attempt)
        log_differences: Keep and log diff text for failed pairs
        difference_filter_regexes: Compiled patterns suppressing known differences
        num_of_virtual_users: Performance mode worker count
        test_duration_time: Performance mode duration in seconds
        request_timeout: Per-request timeout in seconds
        max_parallel_pairs: Integrity mode worker pool size
        retry_base_delay: First backoff delay in seconds
        retry_max_delay: Backoff cap in seconds
        list_order_policy: Whether array order is significant when diffing
    """

    reference_host: str
    testing_host: str
    testing_file_path: str = ""
    test_retries: int = DEFAULT_TEST_RETRIES
    log_differences: bool = False
    difference_filter_regexes: Tuple[Pattern[str], ...] = ()
    num_of_virtual_users: int = DEFAULT_NUM_OF_VIRTUAL_USERS
    test_duration_time: int = DEFAULT_TEST_DURATION_TIME
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_parallel_pairs: int = DEFAULT_MAX_PARALLEL_PAIRS
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY
    list_order_policy: ListOrderPolicy = ListOrderPolicy.STRICT

    def __post_init__(self) -> None:
        validate_config(self)


def validate_config(config: IntegrityVerificationConfig) -> None:
    """
    Semantic validation that the schema cannot express.

    Raises:
        ConfigurationError: On the first invalid field
    """
    if config.test_retries < 1:
        raise ConfigurationError(
            f"test_retries must be at least 1, got {config.test_retries}"
        )
    if config.num_of_virtual_users < 1:
        raise ConfigurationError(
            f"num_of_virtual_users must be at least 1, got {config.num_of_virtual_users}"
        )
    if config.test_duration_time < 1:
        raise ConfigurationError(
            f"test_duration_time must be at least 1 second, got {config.test_duration_time}"
        )
    if config.max_parallel_pairs < 1:
        raise ConfigurationError(
            f"max_parallel_pairs must be at least 1, got {config.max_parallel_pairs}"
        )
    if config.request_timeout <= 0:
        raise ConfigurationError("request_timeout must be positive")
    if config.retry_base_delay <= 0 or config.retry_max_delay < config.retry_base_delay:
        raise ConfigurationError(
            "retry delays must satisfy 0 < retry_base_delay <= retry_max_delay"
        )
    for host_field in ("reference_host", "testing_host"):
        host = getattr(config, host_field)
        parts = urlsplit(host)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"{host_field} must be an http(s) URL")


def compile_filter_regexes(patterns: Any) -> Tuple[Pattern[str], ...]:
    """
    Compile difference filter regexes in order.

    Raises:
        ConfigurationError: If any pattern is invalid
    """
    compiled = []
    for pattern in patterns or []:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ConfigurationError(f"Invalid difference filter regex {pattern!r}: {e}") from e
    return tuple(compiled)


class SecretRedactionFilter(logging.Filter):
    """
    Logging filter that redacts host secrets from log records.

    API keys embedded in host URLs (query values, basic-auth passwords) are
    replaced with ***REDACTED*** to prevent accidental leakage.
    """

    def __init__(self, hosts: Optional[Tuple[str, ...]] = None):
        super().__init__()
        self.redacted_values: Set[str] = set()
        for host in hosts or ():
            self.redacted_values.update(extract_url_secrets(host))

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter and redact log record."""
        try:
            record.msg = self._redact_string(str(record.msg))
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {k: self._redact_string(str(v)) for k, v in record.args.items()}
                elif isinstance(record.args, (list, tuple)):
                    record.args = tuple(self._redact_string(str(arg)) for arg in record.args)
        except Exception as e:
            logger.warning(f"Error during secret redaction: {e}")
        return True

    def _redact_string(self, text: str) -> str:
        for secret in self.redacted_values:
            if secret in text:
                text = text.replace(secret, "***REDACTED***")
        return text


def extract_url_secrets(url: str) -> Set[str]:
    """Collect query values and passwords longer than 3 characters from a URL."""
    secrets: Set[str] = set()
    try:
        parts = urlsplit(url)
    except ValueError:
        return secrets

    if parts.password and len(parts.password) > 3:
        secrets.add(parts.password)
    for _, value in parse_qsl(parts.query, keep_blank_values=False):
        if len(value) > 3:
            secrets.add(value)
    return secrets


class Settings:
    """
    Configuration loader for integrity and performance runs.
    """

    def __init__(self, schema_path: Union[str, Path] = SCHEMA_PATH):
        self.schema_path = Path(schema_path)
        self._schema: Optional[Dict[str, Any]] = None

    @property
    def schema(self) -> Dict[str, Any]:
        """Lazy-load the JSON schema."""
        if self._schema is None:
            try:
                with open(self.schema_path, "r", encoding="utf-8") as f:
                    self._schema = json.load(f)
                    logger.debug(f"Loaded config schema from {self.schema_path}")
            except FileNotFoundError as e:
                raise ConfigurationError(f"Config schema not found: {self.schema_path}") from e
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in config schema: {e}") from e
        return self._schema

    def load_config(self, config_path: Union[str, Path]) -> IntegrityVerificationConfig:
        """
        Load, validate and freeze the run configuration.

        Files ending in .yaml/.yml are parsed as YAML, everything else as JSON.
        DAS_REFERENCE_HOST / DAS_TESTING_HOST override the file values when set.

        Args:
            config_path: Path to the configuration file

        Returns:
            IntegrityVerificationConfig

        Raises:
            ConfigurationError: If the file is missing, unparseable or invalid
        """
        raw = self._read_config_file(Path(config_path))
        return self.build_config(raw)

    def build_config(self, raw: Dict[str, Any]) -> IntegrityVerificationConfig:
        """Validate a raw config mapping and build the frozen config."""
        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        raw = dict(raw)
        for env_name, field_name in (
            (REFERENCE_HOST_ENV, "reference_host"),
            (TESTING_HOST_ENV, "testing_host"),
        ):
            override = os.getenv(env_name)
            if override:
                logger.info(f"Using {field_name} from {env_name}")
                raw[field_name] = override

        try:
            jsonschema.validate(instance=raw, schema=self.schema)
        except jsonschema.ValidationError as e:
            logger.error(f"Configuration failed schema validation: {e.message}")
            raise ConfigurationError(f"Configuration validation failed: {e.message}") from e
        except jsonschema.SchemaError as e:
            raise ConfigurationError(f"Config schema is invalid: {e.message}") from e

        config = IntegrityVerificationConfig(
            reference_host=raw["reference_host"],
            testing_host=raw["testing_host"],
            testing_file_path=raw.get("testing_file_path", ""),
            test_retries=raw.get("test_retries", DEFAULT_TEST_RETRIES),
            log_differences=raw.get("log_differences", False),
            difference_filter_regexes=compile_filter_regexes(
                raw.get("difference_filter_regexes", [])
            ),
            num_of_virtual_users=raw.get("num_of_virtual_users", DEFAULT_NUM_OF_VIRTUAL_USERS),
            test_duration_time=raw.get("test_duration_time", DEFAULT_TEST_DURATION_TIME),
            request_timeout=float(raw.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
            max_parallel_pairs=raw.get("max_parallel_pairs", DEFAULT_MAX_PARALLEL_PAIRS),
            retry_base_delay=float(raw.get("retry_base_delay", DEFAULT_RETRY_BASE_DELAY)),
            retry_max_delay=float(raw.get("retry_max_delay", DEFAULT_RETRY_MAX_DELAY)),
            list_order_policy=ListOrderPolicy(raw.get("list_order_policy", "strict")),
        )
        logger.info(
            f"Loaded configuration: test_retries={config.test_retries}, "
            f"filters={len(config.difference_filter_regexes)}, "
            f"virtual_users={config.num_of_virtual_users}"
        )
        return config

    @staticmethod
    def _read_config_file(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    return yaml.safe_load(f) or {}
                return json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    @staticmethod
    def setup_redaction_filter(
        logger_instance: logging.Logger, config: IntegrityVerificationConfig
    ) -> SecretRedactionFilter:
        """Attach a redaction filter covering both host URLs to a logger and its handlers."""
        redaction_filter = SecretRedactionFilter((config.reference_host, config.testing_host))
        logger_instance.addFilter(redaction_filter)
        for handler in logger_instance.handlers:
            handler.addFilter(redaction_filter)
        return redaction_filter


def load_config(config_path: Union[str, Path]) -> IntegrityVerificationConfig:
    """Load configuration with the default schema."""
    return Settings().load_config(config_path)


def setup_logging_redaction(config: IntegrityVerificationConfig) -> None:
    """Setup host secret redaction for the root logger and the structured loggers."""
    redaction_filter = Settings.setup_redaction_filter(logging.getLogger(), config)
    for name, candidate in logging.root.manager.loggerDict.items():
        if isinstance(candidate, logging.Logger) and name.startswith("src."):
            for handler in candidate.handlers:
                handler.addFilter(redaction_filter)
