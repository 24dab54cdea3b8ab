"""
Configuration for the domain resolver.

This module defines the configuration structures used throughout the
system (network timeouts, IANA source locations, persistence, bulk import
and logging) together with JSON-file and environment loaders.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_STATE_DIR = Path.home() / ".domain_resolver"


@dataclass
class NetworkConfig:
    """Per-attempt timeouts and request identity."""

    rdap_timeout_seconds: float = 10.0
    whois_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 15.0
    user_agent: str = "DomainResolver/1.0"


@dataclass
class IanaConfig:
    """Locations of the IANA discovery sources."""

    rdap_bootstrap_url: str = "https://data.iana.org/rdap/dns.json"
    tld_list_url: str = "https://data.iana.org/TLD/tlds-alpha-by-domain.txt"
    root_db_url_template: str = "https://www.iana.org/domains/root/db/{tld}.html"
    whois_server: str = "whois.iana.org"


@dataclass
class PersistenceConfig:
    """Files backing the TLD directory and the import logs."""

    directory_file_path: Path
    import_log_file_path: Path
    hmac_secret: str


@dataclass
class ImportConfig:
    """Bulk import batching behaviour."""

    batch_size: int = 25
    stale_after_seconds: float = 3600.0


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main configuration combining all sub-configurations."""

    persistence: PersistenceConfig
    network: NetworkConfig = field(default_factory=NetworkConfig)
    iana: IanaConfig = field(default_factory=IanaConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def create_default_config(
    state_dir: Optional[Path] = None,
    hmac_secret: str = "default-secret-change-me",
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        state_dir: Directory holding the directory and import log files
        hmac_secret: Secret for HMAC protection of stored files

    Returns:
        SystemConfig with default settings
    """
    if state_dir is None:
        state_dir = DEFAULT_STATE_DIR

    return SystemConfig(
        persistence=PersistenceConfig(
            directory_file_path=state_dir / "tld_directory.json",
            import_log_file_path=state_dir / "import_logs.json",
            hmac_secret=hmac_secret,
        ),
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Missing sections fall back to their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        defaults = create_default_config()

        persistence_data = data.get("persistence", {})
        directory_file = persistence_data.get("directory_file_path")
        import_log_file = persistence_data.get("import_log_file_path")
        persistence = PersistenceConfig(
            directory_file_path=(
                Path(directory_file) if directory_file
                else defaults.persistence.directory_file_path
            ),
            import_log_file_path=(
                Path(import_log_file) if import_log_file
                else defaults.persistence.import_log_file_path
            ),
            hmac_secret=persistence_data.get("hmac_secret", defaults.persistence.hmac_secret),
        )

        network_data = data.get("network", {})
        network = NetworkConfig(
            rdap_timeout_seconds=network_data.get("rdap_timeout_seconds", 10.0),
            whois_timeout_seconds=network_data.get("whois_timeout_seconds", 10.0),
            http_timeout_seconds=network_data.get("http_timeout_seconds", 15.0),
            user_agent=network_data.get("user_agent", NetworkConfig.user_agent),
        )

        iana_data = data.get("iana", {})
        iana = IanaConfig(
            rdap_bootstrap_url=iana_data.get("rdap_bootstrap_url", IanaConfig.rdap_bootstrap_url),
            tld_list_url=iana_data.get("tld_list_url", IanaConfig.tld_list_url),
            root_db_url_template=iana_data.get(
                "root_db_url_template", IanaConfig.root_db_url_template
            ),
            whois_server=iana_data.get("whois_server", IanaConfig.whois_server),
        )

        imports_data = data.get("imports", {})
        imports = ImportConfig(
            batch_size=imports_data.get("batch_size", 25),
            stale_after_seconds=imports_data.get("stale_after_seconds", 3600.0),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SystemConfig(
            persistence=persistence,
            network=network,
            iana=iana,
            imports=imports,
            logging=logging_config,
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "persistence": {
                "directory_file_path": str(config.persistence.directory_file_path),
                "import_log_file_path": str(config.persistence.import_log_file_path),
                "hmac_secret": config.persistence.hmac_secret,
            },
            "network": {
                "rdap_timeout_seconds": config.network.rdap_timeout_seconds,
                "whois_timeout_seconds": config.network.whois_timeout_seconds,
                "http_timeout_seconds": config.network.http_timeout_seconds,
                "user_agent": config.network.user_agent,
            },
            "iana": {
                "rdap_bootstrap_url": config.iana.rdap_bootstrap_url,
                "tld_list_url": config.iana.tld_list_url,
                "root_db_url_template": config.iana.root_db_url_template,
                "whois_server": config.iana.whois_server,
            },
            "imports": {
                "batch_size": config.imports.batch_size,
                "stale_after_seconds": config.imports.stale_after_seconds,
            },
            "logging": {
                "level": config.logging.level,
                "audit_mode": config.logging.audit_mode,
                "audit_signing_key": config.logging.audit_signing_key,
                "output_format": config.logging.output_format,
            },
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def load_config_from_env(dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Build configuration from environment variables.

    A ``.env`` file is read first (without overriding variables that are
    already set), then every known variable overrides the defaults.

    Args:
        dotenv_path: Optional explicit .env file location

    Returns:
        SystemConfig
    """
    load_dotenv(dotenv_path=dotenv_path)

    config = create_default_config(
        hmac_secret=os.getenv("HMAC_SECRET", "default-secret-change-me"),
    )

    directory_file = os.getenv("DIRECTORY_FILE", "").strip()
    if directory_file:
        config.persistence.directory_file_path = Path(directory_file)
    import_log_file = os.getenv("IMPORT_LOG_FILE", "").strip()
    if import_log_file:
        config.persistence.import_log_file_path = Path(import_log_file)

    config.network.rdap_timeout_seconds = _float_env("RDAP_TIMEOUT", 10.0)
    config.network.whois_timeout_seconds = _float_env("WHOIS_TIMEOUT", 10.0)
    config.network.http_timeout_seconds = _float_env("HTTP_TIMEOUT", 15.0)

    config.imports.batch_size = max(1, _int_env("IMPORT_BATCH_SIZE", 25))
    config.imports.stale_after_seconds = _float_env("IMPORT_STALE_AFTER", 3600.0)

    config.logging.level = (os.getenv("LOG_LEVEL", "info") or "info").lower()
    log_format = (os.getenv("LOG_FORMAT", "text") or "text").lower()
    if log_format not in ("json", "text", "both"):
        log_format = "text"
    config.logging.output_format = log_format

    return config
