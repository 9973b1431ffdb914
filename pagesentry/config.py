"""Configuration management for PageSentry."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .scanner.content import DEFAULT_USER_AGENT
from .scanner.session import ScanSettings
from .utils.allowlist import read_allowlist_patterns

logger = logging.getLogger(__name__)

SQUATTING_RANKINGS = {"first", "best"}


@dataclass
class Config:
    """PageSentry configuration."""

    # Paths
    config_dir: Path = field(default_factory=lambda: Path("./config"))
    rules_file: Optional[Path] = None  # defaults to <config_dir>/detection_rules.yaml
    allowlist_file: Optional[Path] = None  # defaults to <config_dir>/allowlist.txt

    # Telemetry
    telemetry_webhook_url: str = ""
    telemetry_timeout: float = 5.0

    # Page fetching (CLI)
    http_timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT

    # "" keeps whatever the rule document selects
    squatting_ranking: str = ""

    # Scheduler timings (override via config/heuristics.yaml or env)
    scan: ScanSettings = field(default_factory=ScanSettings)

    # Loaded lists
    allowlist: list[str] = field(default_factory=list)

    def __post_init__(self):
        """Resolve paths and load the user allow-list."""
        self.config_dir = Path(self.config_dir)
        self.rules_file = Path(self.rules_file) if self.rules_file else self.config_dir / "detection_rules.yaml"
        self.allowlist_file = (
            Path(self.allowlist_file) if self.allowlist_file else self.config_dir / "allowlist.txt"
        )
        self._load_lists()

    def _load_lists(self):
        """Load the allow-list file if present."""
        if self.allowlist_file.exists() and not self.allowlist:
            self.allowlist = read_allowlist_patterns(self.allowlist_file)


def _load_heuristics(config_dir: Path) -> dict:
    """Load scheduler/squatting overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring heuristics.yaml: expected a mapping at the top level")
        return {}

    def _coerce_scan(raw) -> dict:
        if not isinstance(raw, dict):
            return {}
        defaults = ScanSettings()
        values: dict = {}
        for item in fields(ScanSettings):
            if item.name not in raw:
                continue
            value = raw[item.name]
            default = getattr(defaults, item.name)
            try:
                if isinstance(default, tuple):
                    values[item.name] = tuple(float(v) for v in value)
                elif isinstance(default, int):
                    values[item.name] = int(value)
                else:
                    values[item.name] = float(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid heuristics value scan.%s=%r", item.name, value)
        return values

    def _coerce_ranking(raw) -> str:
        if not isinstance(raw, dict):
            return ""
        ranking = str(raw.get("ranking") or "").strip().lower()
        if ranking and ranking not in SQUATTING_RANKINGS:
            logger.warning("Ignoring unknown squatting ranking %r", ranking)
            return ""
        return ranking

    return {
        "scan": _coerce_scan(data.get("scan")),
        "squatting_ranking": _coerce_ranking(data.get("squatting")),
    }


def _env_number(name: str, cast):
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return None


def load_config() -> Config:
    """Load configuration from environment variables and config files."""
    load_dotenv()

    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)

    scan_values = dict(heuristics.get("scan", {}))
    for env_name, key, cast in (
        ("SCAN_MAX_SCANS", "max_scans", int),
        ("SCAN_BUDGET_MS", "scan_budget_ms", float),
        ("SCAN_COOLDOWN_MS", "cooldown_ms", float),
    ):
        value = _env_number(env_name, cast)
        if value is not None:
            scan_values[key] = value

    ranking = os.getenv("SQUATTING_RANKING", "").strip().lower() or heuristics.get("squatting_ranking", "")

    return Config(
        config_dir=config_dir,
        rules_file=Path(os.getenv("RULES_FILE")) if os.getenv("RULES_FILE") else None,
        allowlist_file=Path(os.getenv("ALLOWLIST_FILE")) if os.getenv("ALLOWLIST_FILE") else None,
        telemetry_webhook_url=os.getenv("TELEMETRY_WEBHOOK_URL", "").strip(),
        telemetry_timeout=float(os.getenv("TELEMETRY_TIMEOUT", "5")),
        http_timeout=float(os.getenv("HTTP_TIMEOUT", "15")),
        user_agent=os.getenv("PAGESENTRY_USER_AGENT", DEFAULT_USER_AGENT),
        squatting_ranking=ranking,
        scan=ScanSettings(**scan_values),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if not config.rules_file or not Path(config.rules_file).exists():
        errors.append(f"Rules file not found: {config.rules_file}")

    scan = config.scan
    if scan.max_scans < 1:
        errors.append("max_scans must be at least 1")
    if scan.scan_budget_ms <= 0:
        errors.append("scan_budget_ms must be positive")
    if scan.cooldown_ms < 0 or scan.threat_cooldown_ms < 0:
        errors.append("cooldowns must not be negative")
    if any(delay < 0 for delay in scan.threat_rescan_delays_ms):
        errors.append("threat_rescan_delays_ms must not contain negative delays")

    if config.squatting_ranking and config.squatting_ranking not in SQUATTING_RANKINGS:
        errors.append(f"SQUATTING_RANKING must be one of {sorted(SQUATTING_RANKINGS)}")

    webhook = config.telemetry_webhook_url
    if webhook and not webhook.startswith(("http://", "https://")):
        errors.append("TELEMETRY_WEBHOOK_URL must be an http(s) URL")

    if not config.allowlist:
        logger.info("No user allow-list configured")

    return errors
