#!/usr/bin/env python3
"""ipwatch-dns - Health-check driven Route53 record sync

Reads a health-check report (as produced by a watch handler such as
`consul watch`) from stdin, collects the IPs each configured domain is tagged
with, and upserts the domain's "A" record in a Route53 hosted zone when the
published addresses differ from the observed ones. Runs once per invocation.

Usage:
    consul watch -type=checks ipwatch-dns watch -H example.com \\
        -D www.example.com:web -D api.example.com:api

Report format (JSON on stdin), either a mapping of check id to check:

    {"global-ip": {"Status": "passing",
                   "Instances": [{"Tags": ["web"], "Addresses": ["203.0.113.10"]}]}}

or a list of checks carrying their own id:

    [{"CheckID": "global-ip", "Instances": [{"Tags": ["web"], "Address": "203.0.113.10"}]}]

Environment variables (command line flags take precedence):

    Target:
        IPWATCH_HOSTED_ZONE        Route53 hosted zone name, e.g. "example.com"
        IPWATCH_CHECK_ID           Only use IPs reported by this check id
        IPWATCH_DOMAIN             Comma/space separated domain specs.
                                   "fqdn" uses the fqdn itself as the tag,
                                   "fqdn:tag" selects IPs tagged with "tag".
        IPWATCH_TTL                TTL for upserted records (default: 60)

    Notification:
        IPWATCH_SLACK_WEBHOOK_URL  Slack incoming webhook; changes are only
                                   logged when unset
        IPWATCH_SLACK_CHANNEL      Channel override for the webhook (optional)

    Runtime:
        IPWATCH_CONFIG             YAML file with the same settings (lowest precedence)
        IPWATCH_DRY_RUN            Log planned changes without writing (default: false)
        IPWATCH_CONTINUE_ON_ERROR  Keep going after a Route53 failure on one domain
                                   (default: false, the run aborts)
        IPWATCH_LOG_LEVEL          DEBUG, INFO, WARNING, ERROR (default: INFO)
        IPWATCH_AWS_PROFILE        AWS profile for the Route53 client (optional)

Exit codes:
    0 success, 1 other failure, 2 configuration error, 3 empty input,
    4 malformed report, 5 hosted zone not found, 6 Route53 read/write error
"""

from __future__ import annotations

import argparse
import ipaddress
import json
import logging
import os
import re
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import boto3
import requests
import yaml
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60
CHANGE_COMMENT = "Update via ipwatch-dns"
ENV_PREFIX = "IPWATCH_"

# =============================================================================
# Errors
# =============================================================================


class IPWatchError(Exception):
    """Base class for every failure a run can report."""


class EmptyInput(IPWatchError):
    """The report stream carried no data (the watch has nothing to say yet)."""


class ParseError(IPWatchError):
    """The report is not a well-formed health-check document."""


class ValidationError(IPWatchError):
    """A domain spec or setting is invalid."""


class ConfigurationError(ValidationError):
    """Required settings are missing or malformed."""


class ZoneNotFound(IPWatchError):
    """The configured hosted zone does not exist in the provider."""


class StoreError(IPWatchError):
    """A record store call failed."""


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class NotifyError(IPWatchError):
    """Delivering a change notification failed. Never fatal to a run."""


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1
    CONFIG = 2
    EMPTY_INPUT = 3
    PARSE = 4
    ZONE_NOT_FOUND = 5
    STORE = 6


def exit_code_for(error: BaseException) -> ExitCode:
    """Map a run failure to the process exit code reported by `main`."""
    if isinstance(error, ValidationError):
        return ExitCode.CONFIG
    if isinstance(error, EmptyInput):
        return ExitCode.EMPTY_INPUT
    if isinstance(error, ParseError):
        return ExitCode.PARSE
    if isinstance(error, ZoneNotFound):
        return ExitCode.ZONE_NOT_FOUND
    if isinstance(error, StoreError):
        return ExitCode.STORE
    return ExitCode.FAILURE


# =============================================================================
# Enums
# =============================================================================


class RecordType(Enum):
    """DNS record types managed by the record store."""

    A = "A"


class ChangeAction(Enum):
    """Record store write actions."""

    UPSERT = "UPSERT"


class Outcome(Enum):
    """What happened to a domain during one run."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    PLANNED = "planned"
    FAILED = "failed"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Observation:
    """One (tag, address) pair extracted from a health-check report."""

    tag: str
    address: str


@dataclass(frozen=True)
class CheckReport:
    """Parsed health-check report.

    `observations` only holds entries of `target_check_id` when one is set,
    and only that check is validated; `checks` lists every check id present
    in the document.
    """

    observations: Tuple[Observation, ...]
    target_check_id: Optional[str] = None
    checks: Tuple[str, ...] = ()

    def addresses_for_tag(self, tag: str) -> List[str]:
        return [o.address for o in self.observations if o.tag == tag]


@dataclass(frozen=True)
class Domain:
    """A managed DNS name and the tag selecting its IPs."""

    fqdn: str
    tag: str


@dataclass(frozen=True)
class DiffResult:
    """Set difference between published and observed addresses."""

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass(frozen=True)
class DomainOutcome:
    domain: Domain
    outcome: Outcome
    diff: Optional[DiffResult] = None
    error: Optional[IPWatchError] = None
    notified: bool = False


@dataclass
class RunResult:
    """Per-domain outcomes of one reconciliation run, in processing order."""

    outcomes: List[DomainOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(o.outcome == Outcome.FAILED for o in self.outcomes)

    def by_outcome(self, outcome: Outcome) -> List[Domain]:
        return [o.domain for o in self.outcomes if o.outcome == outcome]


@dataclass(frozen=True)
class WatchConfig:
    """Run configuration, built once at startup by `load_config`."""

    hosted_zone: str
    domains: Tuple[str, ...]
    check_id: Optional[str] = None
    ttl: int = DEFAULT_TTL
    slack_webhook_url: str = ""
    slack_channel: str = ""
    dry_run: bool = False
    continue_on_error: bool = False
    log_level: str = "INFO"
    aws_profile: Optional[str] = None


# =============================================================================
# Report Parser
# =============================================================================


def parse_report(raw: Union[bytes, str, BinaryIO], check_id: Optional[str] = None) -> CheckReport:
    """Parse a health-check report into tagged IP observations.

    Args:
        raw: Report bytes or a binary stream to read them from
        check_id: If set, only observations of this check are kept

    Returns:
        CheckReport with observations in document order

    Raises:
        EmptyInput: The stream is empty (or whitespace only)
        ParseError: The document is malformed
    """
    data = raw.read() if hasattr(raw, "read") else raw
    if isinstance(data, str):
        data = data.encode("utf-8")
    if not data or not data.strip():
        raise EmptyInput("No report data on input")

    try:
        document = json.loads(data)
    except ValueError as e:
        raise ParseError(f"Report is not valid JSON: {e}") from e

    observations: List[Observation] = []
    checks: List[str] = []
    for current_id, check in _iter_checks(document):
        checks.append(current_id)
        if check_id and current_id != check_id:
            continue
        observations.extend(_parse_check(current_id, check))

    return CheckReport(
        observations=tuple(observations),
        target_check_id=check_id or None,
        checks=tuple(checks),
    )


def _iter_checks(document: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
    if isinstance(document, dict):
        for check_id, check in document.items():
            if not isinstance(check, dict):
                raise ParseError(f"Check '{check_id}' is not an object")
            yield str(check_id), check
    elif isinstance(document, list):
        for index, check in enumerate(document):
            if not isinstance(check, dict):
                raise ParseError(f"Check #{index} is not an object")
            check_id = check.get("CheckID")
            if not isinstance(check_id, str) or not check_id:
                raise ParseError(f"Check #{index} has no CheckID")
            yield check_id, check
    else:
        raise ParseError(
            f"Unexpected report format: expected object or list, got {type(document).__name__}"
        )


def _parse_check(check_id: str, check: Dict[str, Any]) -> List[Observation]:
    instances = check.get("Instances")
    if instances is None:
        return []
    if not isinstance(instances, list):
        raise ParseError(f"Check '{check_id}': Instances must be a list")

    observations: List[Observation] = []
    for index, instance in enumerate(instances):
        where = f"Check '{check_id}' instance #{index}"
        if not isinstance(instance, dict):
            raise ParseError(f"{where} is not an object")

        tags = instance.get("Tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ParseError(f"{where}: Tags must be a list of strings")

        addresses = [_parse_address(where, a) for a in _instance_addresses(where, instance)]
        for tag in tags:
            for address in addresses:
                observations.append(Observation(tag=tag, address=address))
    return observations


def _instance_addresses(where: str, instance: Dict[str, Any]) -> List[Any]:
    if "Addresses" in instance:
        addresses = instance["Addresses"]
        if not isinstance(addresses, list):
            raise ParseError(f"{where}: Addresses must be a list")
    elif "Address" in instance:
        addresses = [instance["Address"]]
    else:
        raise ParseError(f"{where}: missing Address/Addresses")

    if not addresses:
        raise ParseError(f"{where}: no addresses")
    return addresses


def _parse_address(where: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ParseError(f"{where}: address {value!r} is not a string")
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as e:
        raise ParseError(f"{where}: invalid IP address {value!r}") from e


# =============================================================================
# Domain Model
# =============================================================================

LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def normalize_fqdn(name: str) -> str:
    return name.strip().rstrip(".").lower()


def is_valid_fqdn(name: str) -> bool:
    """Check that `name` is a dot-separated domain name with at least two labels."""
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    if len(labels) < 2:
        return False
    return all(LABEL_RE.match(label) for label in labels)


def parse_domain_spec(spec: str) -> Domain:
    """Parse "fqdn" or "fqdn:tag". A bare fqdn is its own tag."""
    raw = (spec or "").strip()
    if not raw:
        raise ValidationError("Empty domain spec")

    if ":" in raw:
        name, tag = raw.split(":", 1)
        tag = tag.strip()
        if not tag:
            raise ValidationError(f"Domain spec '{spec}' has an empty tag")
    else:
        name, tag = raw, ""

    fqdn = normalize_fqdn(name)
    if not is_valid_fqdn(fqdn):
        raise ValidationError(f"Invalid domain name in spec '{spec}'")
    return Domain(fqdn=fqdn, tag=tag or fqdn)


def build_domains(specs: Sequence[str], zone: Optional[str] = None) -> List[Domain]:
    """Build the ordered domain list, validating every spec.

    Raises:
        ValidationError: On an empty or malformed spec, a duplicate domain, or
            a domain outside `zone`
    """
    zone_name = normalize_fqdn(zone) if zone else ""
    domains: List[Domain] = []
    seen: Dict[str, str] = {}
    for spec in specs:
        domain = parse_domain_spec(spec)
        if domain.fqdn in seen:
            raise ValidationError(
                f"Domain '{domain.fqdn}' configured twice ('{seen[domain.fqdn]}', '{spec}')"
            )
        if zone_name and not (
            domain.fqdn == zone_name or domain.fqdn.endswith("." + zone_name)
        ):
            raise ValidationError(f"Domain '{domain.fqdn}' is not inside hosted zone '{zone_name}'")
        seen[domain.fqdn] = spec
        domains.append(domain)
    return domains


# =============================================================================
# Set Differ
# =============================================================================


def _address_sort_key(address: str) -> Tuple[int, int, Any]:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return (1, 0, address)
    return (0, ip.version, int(ip))


def is_ipv4(address: str) -> bool:
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


def address_set(addresses: Iterable[str]) -> Tuple[str, ...]:
    """Collapse duplicates and return addresses in a stable order (numeric for IPs)."""
    return tuple(sorted(set(addresses), key=_address_sort_key))


def diff_addresses(existing: Iterable[str], observed: Iterable[str]) -> DiffResult:
    """Compare published and observed addresses, ignoring order and duplicates."""
    old = set(existing)
    new = set(observed)
    return DiffResult(added=address_set(new - old), removed=address_set(old - new))


# =============================================================================
# Record Store Interface and Implementations
# =============================================================================


class RecordStore(ABC):
    """Abstract base class for DNS record stores."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the store name for logging."""
        pass

    @abstractmethod
    def resolve_zone(self, zone_name: str) -> str:
        """Return the opaque id of the zone called `zone_name`.

        Raises:
            ZoneNotFound: No such zone
            StoreReadError: The provider call failed
        """
        pass

    @abstractmethod
    def lookup(self, zone_id: str, name: str, record_type: RecordType) -> List[str]:
        """Return the values of the first record set matching `name` and `record_type`."""
        pass

    @abstractmethod
    def upsert(
        self,
        zone_id: str,
        name: str,
        record_type: RecordType,
        addresses: Sequence[str],
        ttl: int,
    ) -> Any:
        """Replace the record set's values entirely. Returns a provider confirmation."""
        pass


class Route53RecordStore(RecordStore):
    """AWS Route53 record store."""

    def __init__(self, client: Any, comment: str = CHANGE_COMMENT):
        self._client = client
        self._comment = comment

    @property
    def name(self) -> str:
        return "Route53"

    def resolve_zone(self, zone_name: str) -> str:
        wanted = normalize_fqdn(zone_name) + "."
        try:
            response = self._client.list_hosted_zones_by_name(DNSName=wanted)
        except (BotoCoreError, ClientError) as e:
            raise StoreReadError(f"Failed to list hosted zones for '{zone_name}': {e}") from e

        matches = [z for z in response.get("HostedZones", []) if z.get("Name") == wanted]
        if not matches:
            names = [z.get("Name") for z in response.get("HostedZones", [])]
            raise ZoneNotFound(f"Hosted zone '{zone_name}' not found (got: {names})")
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} hosted zones named '{zone_name}'; using {matches[0]['Id']}"
            )
        return matches[0]["Id"]

    def lookup(self, zone_id: str, name: str, record_type: RecordType) -> List[str]:
        record_name = normalize_fqdn(name) + "."
        try:
            response = self._client.list_resource_record_sets(
                HostedZoneId=zone_id,
                StartRecordName=record_name,
                StartRecordType=record_type.value,
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreReadError(f"Failed to read {record_type.value} record for {name}: {e}") from e

        # Route53 lists from the start name onwards, so the next record may be
        # a different name entirely.
        for rrset in response.get("ResourceRecordSets", []):
            if rrset.get("Name", "").lower() != record_name or rrset.get("Type") != record_type.value:
                continue
            return [rr["Value"] for rr in rrset.get("ResourceRecords", [])]
        return []

    def upsert(
        self,
        zone_id: str,
        name: str,
        record_type: RecordType,
        addresses: Sequence[str],
        ttl: int,
    ) -> Dict[str, Any]:
        change_batch = self.change_batch(name, record_type, addresses, ttl)
        try:
            response = self._client.change_resource_record_sets(
                HostedZoneId=zone_id, ChangeBatch=change_batch
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreWriteError(f"Failed to upsert {record_type.value} record for {name}: {e}") from e
        return response.get("ChangeInfo", {})

    def change_batch(
        self, name: str, record_type: RecordType, addresses: Sequence[str], ttl: int
    ) -> Dict[str, Any]:
        return {
            "Comment": self._comment,
            "Changes": [
                {
                    "Action": ChangeAction.UPSERT.value,
                    "ResourceRecordSet": {
                        "Name": normalize_fqdn(name) + ".",
                        "Type": record_type.value,
                        "TTL": ttl,
                        "ResourceRecords": [{"Value": a} for a in addresses],
                    },
                }
            ],
        }


# =============================================================================
# Notifier Interface and Implementations
# =============================================================================


def format_change_message(domain: Domain, diff: DiffResult) -> str:
    added = ", ".join(diff.added) or "-"
    removed = ", ".join(diff.removed) or "-"
    return (
        f"DNS record `{domain.fqdn}` updated (tag: {domain.tag})\n"
        f"added: {added}\n"
        f"removed: {removed}"
    )


class Notifier(ABC):
    """Abstract base class for change notification sinks."""

    @abstractmethod
    def notify(self, domain: Domain, diff: DiffResult) -> None:
        """Report an applied change. Raises NotifyError on delivery failure."""
        pass


class LogNotifier(Notifier):
    """Fallback notifier used when no webhook is configured."""

    def notify(self, domain: Domain, diff: DiffResult) -> None:
        logger.info(format_change_message(domain, diff).replace("\n", "; "))


class SlackNotifier(Notifier):
    """Slack incoming webhook notifier."""

    def __init__(
        self,
        webhook_url: str,
        channel: str = "",
        username: str = "ipwatch-dns",
        timeout_seconds: float = 5.0,
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._username = username
        self._timeout = timeout_seconds
        self._session = requests.Session()

    def notify(self, domain: Domain, diff: DiffResult) -> None:
        payload: Dict[str, Any] = {"text": format_change_message(domain, diff)}
        if self._channel:
            payload["channel"] = self._channel
        if self._username:
            payload["username"] = self._username
        try:
            response = self._session.post(self._webhook_url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotifyError(f"Failed to notify Slack about {domain.fqdn}: {e}") from e
        logger.debug(f"Notified Slack about {domain.fqdn}")


# =============================================================================
# Reconciler
# =============================================================================


class Reconciler:
    """Brings each domain's "A" record in line with the observed IPs.

    Domains are handled strictly in order. A record store failure aborts the
    run unless `continue_on_error` is set; writes already made for earlier
    domains are kept either way.
    """

    def __init__(
        self,
        *,
        record_store: RecordStore,
        notifier: Notifier,
        zone_id: str,
        zone_name: str = "",
        ttl: int = DEFAULT_TTL,
        dry_run: bool = False,
        continue_on_error: bool = False,
    ):
        self.record_store = record_store
        self.notifier = notifier
        self.zone_id = zone_id
        self.zone_name = zone_name or zone_id
        self.ttl = ttl
        self.dry_run = dry_run
        self.continue_on_error = continue_on_error

    def reconcile(self, domains: Sequence[Domain], report: CheckReport) -> RunResult:
        result = RunResult()
        for domain in domains:
            result.outcomes.append(self.reconcile_domain(domain, report))

        logger.info(
            f"Run finished: {len(result.by_outcome(Outcome.UPDATED))} updated, "
            f"{len(result.by_outcome(Outcome.UNCHANGED))} unchanged, "
            f"{len(result.by_outcome(Outcome.SKIPPED))} skipped"
            + (f", {len(result.by_outcome(Outcome.PLANNED))} planned" if self.dry_run else "")
            + (f", {len(result.by_outcome(Outcome.FAILED))} failed" if not result.ok else "")
        )
        return result

    def reconcile_domain(self, domain: Domain, report: CheckReport) -> DomainOutcome:
        logger.info(f"Handling domain: {domain.fqdn} (tag: {domain.tag})")
        observed = address_set(report.addresses_for_tag(domain.tag))
        ignored = [a for a in observed if not is_ipv4(a)]
        if ignored:
            logger.warning(f"Ignoring non-IPv4 addresses for {RecordType.A.value} record {domain.fqdn}: {ignored}")
            observed = tuple(a for a in observed if is_ipv4(a))
        if not observed:
            # An empty set would wipe the record; treat it as a reporting gap.
            logger.warning(f"No IPs observed for tag '{domain.tag}', skipping {domain.fqdn} (fail-safe)")
            return DomainOutcome(domain=domain, outcome=Outcome.SKIPPED)
        logger.info(f"IPs: {list(observed)}")

        try:
            existing = self.record_store.lookup(self.zone_id, domain.fqdn, RecordType.A)
            logger.info(f"Existing IPs: {existing}")
            diff = diff_addresses(existing, observed)

            if not diff.changed:
                logger.info("No change, skipping.")
                return DomainOutcome(domain=domain, outcome=Outcome.UNCHANGED, diff=diff)

            if self.dry_run:
                logger.info(
                    f"Dry run: would upsert {domain.fqdn} {RecordType.A.value} {list(observed)} "
                    f"(ttl {self.ttl}, added {list(diff.added)}, removed {list(diff.removed)})"
                )
                return DomainOutcome(domain=domain, outcome=Outcome.PLANNED, diff=diff)

            confirmation = self.record_store.upsert(
                self.zone_id, domain.fqdn, RecordType.A, observed, self.ttl
            )
        except StoreError as e:
            logger.error(f"{self.record_store.name} failure for {domain.fqdn} in zone {self.zone_name}: {e}")
            if not self.continue_on_error:
                raise
            return DomainOutcome(domain=domain, outcome=Outcome.FAILED, error=e)

        logger.info(f"Success: {confirmation}")
        return DomainOutcome(
            domain=domain,
            outcome=Outcome.UPDATED,
            diff=diff,
            notified=self._notify(domain, diff),
        )

    def _notify(self, domain: Domain, diff: DiffResult) -> bool:
        try:
            self.notifier.notify(domain, diff)
        except NotifyError as e:
            logger.warning(f"Notification failed for {domain.fqdn}: {e}")
            return False
        return True


# =============================================================================
# Configuration
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _split_list(value: Any, separators: str = r"[,\s]+") -> List[str]:
    """Split comma/space separated strings (or lists of them) into items."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    result: List[str] = []
    for item in items:
        result.extend(part.strip() for part in re.split(separators, str(item)) if part.strip())
    return result


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def load_config_file(path: str) -> Dict[str, Any]:
    """Load a YAML settings file. Keys mirror the environment variables."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ipwatch-dns",
        description="Sync health-check reported IPs into Route53 A records",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser(
        "watch",
        help="The IP watcher (run under a watch handler such as 'consul watch')",
    )
    watch.add_argument("-H", "--hosted-zone", help="Hosted zone to update")
    watch.add_argument("-C", "--check-id", help="Check id to use for IP output")
    watch.add_argument(
        "-D",
        "--domain",
        action="append",
        dest="domains",
        help="Domain to keep IPs for, 'fqdn' or 'fqdn:tag' (repeatable)",
    )
    watch.add_argument("--ttl", type=int, help=f"Record TTL (default: {DEFAULT_TTL})")
    watch.add_argument("--slack-webhook-url", help="Slack incoming webhook URL")
    watch.add_argument("--slack-channel", help="Slack channel override")
    watch.add_argument("--config", help="YAML config file")
    watch.add_argument(
        "--dry-run", action="store_true", default=None, help="Log changes without applying them"
    )
    watch.add_argument(
        "--continue-on-error",
        action="store_true",
        default=None,
        help="Keep processing domains after a Route53 failure",
    )
    watch.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR (default: INFO)")
    watch.add_argument("--aws-profile", help="AWS profile for the Route53 client")
    return parser


def load_config(
    argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None
) -> WatchConfig:
    """Build the run configuration: flags, then environment, then YAML file.

    Raises:
        ConfigurationError: Missing hosted zone or domains, or invalid values
    """
    env = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    def env_value(key: str) -> Optional[str]:
        return env.get(ENV_PREFIX + key)

    config_path = _first(args.config, env_value("CONFIG"))
    file_data = load_config_file(config_path) if config_path else {}
    slack_data = file_data.get("slack") or {}
    if not isinstance(slack_data, dict):
        raise ConfigurationError("'slack' in config file must be a mapping")

    hosted_zone = _first(args.hosted_zone, env_value("HOSTED_ZONE"), file_data.get("hosted_zone"))
    if not hosted_zone:
        raise ConfigurationError(
            "Hosted zone is required (--hosted-zone or IPWATCH_HOSTED_ZONE)"
        )

    domains = (
        # Flag values are quoted by the shell, so only commas separate them.
        _split_list(args.domains, separators=",")
        or _split_list(env_value("DOMAIN"))
        or _split_list(file_data.get("domains"))
    )
    if not domains:
        raise ConfigurationError("At least one domain is required (--domain or IPWATCH_DOMAIN)")

    raw_ttl = _first(args.ttl, env_value("TTL"), file_data.get("ttl"), DEFAULT_TTL)
    try:
        ttl = int(raw_ttl)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid TTL: {raw_ttl!r}") from e
    if ttl <= 0:
        raise ConfigurationError(f"TTL must be positive, got {ttl}")

    log_level = str(
        _first(args.log_level, env_value("LOG_LEVEL"), file_data.get("log_level"), "INFO")
    ).upper()
    if not isinstance(getattr(logging, log_level, None), int):
        raise ConfigurationError(f"Invalid log level: {log_level}")

    check_id = _first(args.check_id, env_value("CHECK_ID"), file_data.get("check_id"))

    return WatchConfig(
        hosted_zone=normalize_fqdn(str(hosted_zone)),
        domains=tuple(domains),
        check_id=str(check_id) if check_id else None,
        ttl=ttl,
        slack_webhook_url=str(
            _first(
                args.slack_webhook_url,
                env_value("SLACK_WEBHOOK_URL"),
                slack_data.get("webhook_url"),
            )
            or ""
        ),
        slack_channel=str(
            _first(args.slack_channel, env_value("SLACK_CHANNEL"), slack_data.get("channel")) or ""
        ),
        dry_run=_parse_bool(_first(args.dry_run, env_value("DRY_RUN"), file_data.get("dry_run"))),
        continue_on_error=_parse_bool(
            _first(
                args.continue_on_error,
                env_value("CONTINUE_ON_ERROR"),
                file_data.get("continue_on_error"),
            )
        ),
        log_level=log_level,
        aws_profile=_first(args.aws_profile, env_value("AWS_PROFILE"), file_data.get("aws_profile")),
    )


# =============================================================================
# Logging Setup
# =============================================================================


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =============================================================================
# Provider Registry
# =============================================================================


def create_record_store(config: WatchConfig) -> RecordStore:
    """Factory function to create the Route53 record store."""
    session = boto3.Session(profile_name=config.aws_profile)
    client = session.client(
        "route53",
        # Route53 is a global service; the region only picks the endpoint.
        region_name="us-east-1",
        config=BotoConfig(
            connect_timeout=5,
            read_timeout=15,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )
    return Route53RecordStore(client)


def create_notifier(config: WatchConfig) -> Notifier:
    """Factory function to create the configured notifier."""
    if config.slack_webhook_url:
        return SlackNotifier(config.slack_webhook_url, channel=config.slack_channel)
    return LogNotifier()


# =============================================================================
# Main
# =============================================================================


def run_watch(
    config: WatchConfig,
    stream: BinaryIO,
    *,
    record_store: Optional[RecordStore] = None,
    notifier: Optional[Notifier] = None,
) -> RunResult:
    """Execute one watch run. Raises IPWatchError subclasses on fatal failures."""
    logger.info(
        f"Watch called: hostedZone={config.hosted_zone}, domains={list(config.domains)}, "
        f"checkID={config.check_id or ''}"
    )

    domains = build_domains(config.domains, zone=config.hosted_zone)
    report = parse_report(stream, check_id=config.check_id)
    logger.info(
        f"Report: {len(report.observations)} observation(s) from check(s) {list(report.checks)}"
    )

    store = record_store or create_record_store(config)
    zone_id = store.resolve_zone(config.hosted_zone)
    logger.info(f"Hosted zone: {config.hosted_zone}({zone_id})")

    reconciler = Reconciler(
        record_store=store,
        notifier=notifier or create_notifier(config),
        zone_id=zone_id,
        zone_name=config.hosted_zone,
        ttl=config.ttl,
        dry_run=config.dry_run,
        continue_on_error=config.continue_on_error,
    )
    return reconciler.reconcile(domains, report)


def main(argv: Optional[Sequence[str]] = None, stdin: Optional[BinaryIO] = None) -> None:
    """Main entry point."""
    try:
        config = load_config(argv)
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(ExitCode.CONFIG)

    configure_logging(config.log_level)
    stream = stdin if stdin is not None else sys.stdin.buffer

    try:
        result = run_watch(config, stream)
    except IPWatchError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(exit_code_for(e))
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(ExitCode.FAILURE)

    if not result.ok:
        failed = ", ".join(d.fqdn for d in result.by_outcome(Outcome.FAILED))
        logger.error(f"Failed domains: {failed}")
        sys.exit(ExitCode.FAILURE)
    sys.exit(ExitCode.OK)


if __name__ == "__main__":
    main()
