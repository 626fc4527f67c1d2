#!/usr/bin/python3
"""svcharden — apply a role-based service hardening baseline to Windows Server.

For every service in the selected role's policy, stops it if running and
forces its startup mode to the policy value.  Each change can be written to
a CSV audit log, and that log can later be replayed with --undo to put the
startup modes back the way they were.
"""

import argparse
import codecs
import csv
import enum
import io
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

# ── Constants ────────────────────────────────────────────────────────────────

LOG_SCHEMA_VERSION = 2
LOG_HEADER = (
    "DateString", "ServiceName",
    "StartTypeBeforeChange", "StartTypeAfterChange",
    "SchemaVersion",
)
UNKNOWN = "Unknown"

SERVICES_KEY = r"SYSTEM\CurrentControlSet\Services"

POWERSHELL = ("powershell.exe", "-NoProfile", "-NonInteractive", "-Command")

ROLES = ("member-server", "domain-controller", "print-server")


# ── Startup mode / runtime status ────────────────────────────────────────────

class StartupMode(enum.Enum):
    """Service startup mode; the value is the registry ``Start`` encoding."""

    BOOT = 0
    SYSTEM = 1
    AUTOMATIC = 2
    MANUAL = 3
    DISABLED = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, text) -> "StartupMode":
        """Parse a mode token as written by Get-Service, sc.exe or WMI."""
        token = (text or "").strip().lower()
        mode = _MODE_ALIASES.get(token)
        if mode is None:
            raise InvalidModeString(text)
        return mode


_MODE_ALIASES = {m.name.lower(): m for m in StartupMode}
_MODE_ALIASES.update({
    "auto": StartupMode.AUTOMATIC,
    "demand": StartupMode.MANUAL,
})

# Set-Service -StartupType cannot express Boot or System.
HIGH_LEVEL_MODES = frozenset({
    StartupMode.AUTOMATIC, StartupMode.MANUAL, StartupMode.DISABLED,
})


class RuntimeStatus(enum.Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    OTHER = "Other"

    @classmethod
    def parse(cls, text) -> "RuntimeStatus":
        for status in (cls.RUNNING, cls.STOPPED):
            if (text or "").strip().lower() == status.value.lower():
                return status
        return cls.OTHER


def mode_label(mode: Optional[StartupMode]) -> str:
    return mode.label if mode is not None else UNKNOWN


# ── Errors ───────────────────────────────────────────────────────────────────

class HardeningError(Exception):
    """Base class for everything svcharden reports about a service or log."""


class ServiceNotFound(HardeningError):
    def __init__(self, service_id: str, detail: str = ""):
        self.service_id = service_id
        msg = f"service '{service_id}' not found"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class StopFailed(HardeningError):
    def __init__(self, service_id: str, detail: str = ""):
        self.service_id = service_id
        msg = f"could not stop '{service_id}'"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class ModeWriteFailed(HardeningError):
    def __init__(self, service_id: str, mode: StartupMode, detail: str = ""):
        self.service_id = service_id
        self.mode = mode
        msg = f"could not set '{service_id}' to {mode.label}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class UndoLogNotFound(HardeningError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"undo log not found: {path}")


class InvalidModeString(HardeningError):
    def __init__(self, text):
        self.text = text
        super().__init__(f"unrecognised startup mode '{text}'")


class MalformedLogRow(HardeningError):
    """Undo log row that cannot be replayed (no service name, newer schema)."""


class UnreadableLog(HardeningError):
    def __init__(self, path, detail: str = ""):
        self.path = path
        msg = f"cannot read log {path}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class LogNotWritable(HardeningError):
    def __init__(self, path, detail: str = ""):
        self.path = path
        msg = f"cannot write log {path}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


# ── Data model ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ServiceDirective:
    service_id: str
    target: StartupMode


@dataclass
class ServiceState:
    service_id: str
    runtime_status: Optional[RuntimeStatus]
    startup_mode: Optional[StartupMode]

    @classmethod
    def unknown(cls, service_id: str) -> "ServiceState":
        return cls(service_id, None, None)

    @property
    def known(self) -> bool:
        return self.startup_mode is not None


@dataclass
class ChangeRecord:
    timestamp: str
    service_id: str
    mode_before: Optional[StartupMode]
    mode_after: Optional[StartupMode]
    schema_version: int = LOG_SCHEMA_VERSION

    def to_row(self) -> list:
        return [
            self.timestamp, self.service_id,
            mode_label(self.mode_before), mode_label(self.mode_after),
            str(self.schema_version),
        ]

    @classmethod
    def from_row(cls, row: dict) -> "ChangeRecord":
        """Build a record from a parsed CSV row.

        Logs written before the SchemaVersion column existed read as
        version 1.  The "before" mode must parse, since it is what undo
        restores; an unparseable "after" mode is kept as unknown.
        """
        raw_version = (row.get("SchemaVersion") or "").strip() or "1"
        try:
            version = int(raw_version)
        except ValueError:
            raise MalformedLogRow(f"bad SchemaVersion '{raw_version}'") from None
        if version > LOG_SCHEMA_VERSION:
            raise MalformedLogRow(
                f"schema version {version} is newer than supported "
                f"({LOG_SCHEMA_VERSION})"
            )

        service_id = (row.get("ServiceName") or "").strip()
        if not service_id:
            raise MalformedLogRow("row has no ServiceName")

        before = StartupMode.parse(row.get("StartTypeBeforeChange"))
        try:
            after = StartupMode.parse(row.get("StartTypeAfterChange"))
        except InvalidModeString:
            after = None

        return cls(
            timestamp=(row.get("DateString") or "").strip(),
            service_id=service_id,
            mode_before=before,
            mode_after=after,
            schema_version=version,
        )


@dataclass
class ApplyResult:
    """Outcome of applying one directive.

    ``error`` carries the fault that kept the service from reaching its
    target (not found, mode write failed).  ``stop_error`` is kept apart
    because a refused stop never blocks the mode change.
    """

    directive: ServiceDirective
    before: ServiceState
    after: ServiceState
    error: Optional[HardeningError] = None
    stop_error: Optional[StopFailed] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def compliant(self) -> bool:
        """Service was already at its target before anything was done."""
        return self.before.startup_mode is self.directive.target

    @property
    def changed(self) -> bool:
        return (self.before.known and self.after.known
                and self.before.startup_mode is not self.after.startup_mode)


# ── Policy catalog ───────────────────────────────────────────────────────────

def _policy(mode: StartupMode, *service_ids) -> tuple:
    return tuple(ServiceDirective(sid, mode) for sid in service_ids)


# Applied to every role.
COMMON_SERVICES = _policy(
    StartupMode.DISABLED,
    "AxInstSV",                 # ActiveX Installer
    "bthserv",                  # Bluetooth Support
    "CDPUserSvc",               # Connected Devices Platform User
    "PimIndexMaintenanceSvc",   # Contact Data
    "dmwappushservice",         # WAP Push Message Routing
    "MapsBroker",               # Downloaded Maps Manager
    "lfsvc",                    # Geolocation
    "SharedAccess",             # Internet Connection Sharing
    "lltdsvc",                  # Link-Layer Topology Discovery Mapper
    "wlidsvc",                  # Microsoft Account Sign-in Assistant
    "NgcSvc",                   # Microsoft Passport
    "NgcCtnrSvc",               # Microsoft Passport Container
    "PhoneSvc",
    "PcaSvc",                   # Program Compatibility Assistant
    "QWAVE",
    "RmSvc",                    # Radio Management
    "SensorDataService",
    "SensrSvc",                 # Sensor Monitoring
    "SensorService",
    "ShellHWDetection",
    "SSDPSRV",                  # SSDP Discovery
    "WiaRpc",                   # Still Image Acquisition Events
    "OneSyncSvc",
    "TabletInputService",
    "upnphost",                 # UPnP Device Host
    "UserDataSvc",
    "UnistoreSvc",
    "WalletService",
    "FrameServer",              # Windows Camera Frame Server
    "stisvc",                   # Windows Image Acquisition
    "wisvc",                    # Windows Insider
    "icssvc",                   # Windows Mobile Hotspot
    "XblAuthManager",
    "XblGameSave",
) + _policy(
    StartupMode.MANUAL,
    "WerSvc",                   # Windows Error Reporting
    "wercplsupport",
)

# Every role except print server.
NON_PRINT_SERVICES = _policy(
    StartupMode.DISABLED,
    "Spooler",
    "PrintNotify",
)

# Member servers only; DCs and print servers still need these.
MEMBER_SERVER_SERVICES = _policy(
    StartupMode.DISABLED,
    "Browser",                  # Computer Browser
) + _policy(
    StartupMode.MANUAL,
    "lmhosts",                  # TCP/IP NetBIOS Helper
)


def directives_for(member_server: bool = False,
                   domain_controller: bool = False,
                   print_server: bool = False) -> list:
    """Return the ordered directive list for the given role flags.

    Common first, then the non-print list, then the member-server-only
    list.  Duplicates are kept.  No role flag means no directives.
    """
    directives = []
    if member_server or domain_controller or print_server:
        directives.extend(COMMON_SERVICES)
    if not print_server and (member_server or domain_controller):
        directives.extend(NON_PRINT_SERVICES)
    if member_server and not domain_controller and not print_server:
        directives.extend(MEMBER_SERVER_SERVICES)
    return directives


# ── Nerd Font icons ──────────────────────────────────────────────────────────

class _I:
    SHIELD   = "\uf132"   # shield
    CHECK    = "\uf058"   # check-circle
    OK       = "\uf00c"   # check
    WARN     = "\uf071"   # exclamation-triangle
    ERROR    = "\uf057"   # times-circle
    EYE      = "\uf06e"   # eye (dry-run)
    SKIP     = "\uf04e"   # forward
    UNDO     = "\uf0e2"   # rotate-left
    COGS     = "\uf085"   # cogs
    BUG      = "\uf188"   # bug (verbose)
    BAN      = "\uf05e"   # ban (disable)
    FILE     = "\uf0f6"   # file-text (log)


# ── ANSI helpers ─────────────────────────────────────────────────────────────

class _C:
    BOLD   = "\033[1m"
    DIM    = "\033[2m"
    GREEN  = "\033[32m"
    YELLOW = "\033[33m"
    RED    = "\033[31m"
    CYAN   = "\033[36m"
    RESET  = "\033[0m"

# TTY check runs once at import time against the real stdout.
if not sys.stdout.isatty():
    _C.BOLD = _C.DIM = _C.GREEN = _C.YELLOW = _C.RED = ""
    _C.CYAN = _C.RESET = ""


def _banner(title: str) -> None:
    print(f"\n{_C.BOLD}{_C.CYAN}{'─' * 60}")
    print(f"  {title}")
    print(f"{'─' * 60}{_C.RESET}")


def _section(icon: str, title: str, count: int) -> None:
    tag = f"{_C.DIM}[{count} services]{_C.RESET}"
    print(f"\n{_C.BOLD}{_C.CYAN}{'─' * 60}")
    print(f"  {icon}  {title}  {tag}")
    print(f"{'─' * 60}{_C.RESET}")


def _info(msg: str) -> None:
    print(f"  {_C.GREEN}{_I.OK}{_C.RESET}  {msg}")


def _warn(msg: str) -> None:
    print(f"  {_C.YELLOW}{_I.WARN}{_C.RESET}  {msg}")


def _error(msg: str) -> None:
    print(f"  {_C.RED}{_I.ERROR}{_C.RESET}  {msg}", file=sys.stderr)


def _skip(msg: str) -> None:
    print(f"  {_C.DIM}{_I.SKIP}  {msg}{_C.RESET}")


def _dry(msg: str) -> None:
    print(f"  {_C.YELLOW}{_I.EYE}  [DRY RUN]{_C.RESET} {msg}")


def _debug(msg: str) -> None:
    print(f"  {_C.DIM}{_I.BUG}  {msg}{_C.RESET}")


# ── OS capabilities ──────────────────────────────────────────────────────────

class ServiceController(Protocol):
    """What svcharden needs from the OS service manager."""

    supported_modes: frozenset

    def query(self, service_id: str) -> ServiceState: ...

    def stop(self, service_id: str) -> None: ...

    def set_startup_mode(self, service_id: str, mode: StartupMode) -> None: ...


class ConfigStore(Protocol):
    """Persisted per-service configuration (the registry on Windows)."""

    def set_start(self, service_id: str, mode: StartupMode) -> None: ...


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PowerShellServiceController:
    """Drives Get-Service / Stop-Service / Set-Service through powershell.exe."""

    supported_modes = HIGH_LEVEL_MODES

    def _powershell(self, script: str) -> subprocess.CompletedProcess:
        cmd = [*POWERSHELL, script]
        try:
            return subprocess.run(cmd, capture_output=True, text=True,
                                  errors="replace")
        except OSError as exc:
            return subprocess.CompletedProcess(cmd, 127, "", str(exc))

    def query(self, service_id: str) -> ServiceState:
        script = (
            f"$s = Get-Service -Name {_ps_quote(service_id)} -ErrorAction Stop; "
            "Write-Output ($s.Status.ToString() + ',' + $s.StartType.ToString())"
        )
        r = self._powershell(script)
        if r.returncode != 0:
            raise ServiceNotFound(service_id, r.stderr.strip())
        status, _, start_type = r.stdout.strip().partition(",")
        try:
            mode = StartupMode.parse(start_type)
        except InvalidModeString:
            mode = None
        return ServiceState(service_id, RuntimeStatus.parse(status), mode)

    def stop(self, service_id: str) -> None:
        r = self._powershell(
            f"Stop-Service -Name {_ps_quote(service_id)} -Force -ErrorAction Stop"
        )
        if r.returncode != 0:
            raise StopFailed(service_id, r.stderr.strip())

    def set_startup_mode(self, service_id: str, mode: StartupMode) -> None:
        if mode not in self.supported_modes:
            raise ModeWriteFailed(service_id, mode,
                                  "Set-Service cannot express this mode")
        r = self._powershell(
            f"Set-Service -Name {_ps_quote(service_id)} "
            f"-StartupType {mode.label} -ErrorAction Stop"
        )
        if r.returncode != 0:
            raise ModeWriteFailed(service_id, mode, r.stderr.strip())


class RegistryConfigStore:
    """Writes the ``Start`` DWORD under HKLM\\SYSTEM\\CurrentControlSet\\Services."""

    def set_start(self, service_id: str, mode: StartupMode) -> None:
        try:
            import winreg
        except ImportError:
            raise ModeWriteFailed(service_id, mode,
                                  "registry not available on this platform") from None
        key_path = f"{SERVICES_KEY}\\{service_id}"
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path, 0,
                                winreg.KEY_SET_VALUE) as key:
                winreg.SetValueEx(key, "Start", 0, winreg.REG_DWORD, mode.value)
        except OSError as exc:
            raise ModeWriteFailed(service_id, mode, str(exc)) from exc


# ── Probe / mutator ──────────────────────────────────────────────────────────

class ServiceMutator:
    """Reads and applies the state of one service at a time.

    ``apply`` never raises for per-service faults; they come back on the
    ApplyResult so the caller can log them and move on.
    """

    def __init__(self, controller: ServiceController, store: ConfigStore,
                 dry_run: bool = False, verbose: bool = False):
        self.controller = controller
        self.store = store
        self.dry_run = dry_run
        self.verbose = verbose

    def read(self, service_id: str) -> ServiceState:
        return self.controller.query(service_id)

    def apply(self, directive: ServiceDirective) -> ApplyResult:
        sid = directive.service_id
        try:
            before = self.read(sid)
        except ServiceNotFound as exc:
            unknown = ServiceState.unknown(sid)
            return ApplyResult(directive, unknown, unknown, error=exc)

        stop_error = None
        if before.runtime_status is RuntimeStatus.RUNNING:
            stop_error = self._stop(sid)

        error = None
        if before.startup_mode is not directive.target:
            try:
                self._set_mode(sid, directive.target)
            except ModeWriteFailed as exc:
                error = exc

        if self.dry_run:
            return ApplyResult(directive, before, before, error, stop_error)

        try:
            after = self.read(sid)
        except ServiceNotFound as exc:
            after = ServiceState.unknown(sid)
            error = error or exc
        return ApplyResult(directive, before, after, error, stop_error)

    def _stop(self, service_id: str) -> Optional[StopFailed]:
        if self.dry_run:
            _dry(f"Stop-Service {service_id}")
            return None
        try:
            self.controller.stop(service_id)
        except StopFailed as exc:
            if self.verbose:
                _debug(str(exc))
            return exc
        return None

    def _set_mode(self, service_id: str, mode: StartupMode) -> None:
        """Set *mode* via the service manager, falling back to the registry."""
        if self.dry_run:
            _dry(f"set {service_id} startup mode to {mode.label}")
            return
        if mode in self.controller.supported_modes:
            try:
                self.controller.set_startup_mode(service_id, mode)
                return
            except ModeWriteFailed as exc:
                if self.verbose:
                    _debug(f"{exc} — falling back to registry")
        elif self.verbose:
            _debug(f"{mode.label} needs a registry write for {service_id}")
        self.store.set_start(service_id, mode)


# ── Change log ───────────────────────────────────────────────────────────────

class ChangeLog:
    """CSV audit log of before/after startup modes, consumed by --undo.

    The file is opened and closed for every record so nothing holds it
    across a run.  The header is written only when the file is created.
    """

    def __init__(self, path):
        self.path = Path(path)

    def record(self, service_id: str, before: ServiceState,
               after: ServiceState, timestamp: Optional[str] = None) -> ChangeRecord:
        rec = ChangeRecord(
            timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
            service_id=service_id,
            mode_before=before.startup_mode,
            mode_after=after.startup_mode,
        )
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            # An empty file may have been left by ensure_writable().
            if fh.tell() == 0:
                writer.writerow(LOG_HEADER)
            writer.writerow(rec.to_row())
        return rec

    def ensure_writable(self) -> None:
        """Open the log for append once, before anything is changed.

        Raises LogNotWritable; creates an empty file if none exists.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8"):
                pass
        except OSError as exc:
            raise LogNotWritable(self.path, str(exc)) from exc

    def read_rows(self) -> list:
        """Return the raw rows in file order.

        Raises UndoLogNotFound, or UnreadableLog when the file is neither
        UTF-8 nor BOM-marked UTF-16 (what PowerShell's Out-File writes).
        """
        if not self.path.is_file():
            raise UndoLogNotFound(self.path)
        raw = self.path.read_bytes()
        try:
            if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
                text = raw.decode("utf-16")
            else:
                # utf-8-sig strips a leading BOM.
                text = raw.decode("utf-8-sig")
            return list(csv.DictReader(io.StringIO(text, newline="")))
        except (UnicodeDecodeError, csv.Error) as exc:
            raise UnreadableLog(self.path, str(exc)) from exc


# ── ServiceHardening ─────────────────────────────────────────────────────────

class ServiceHardening:

    def __init__(self, member_server: bool = False,
                 domain_controller: bool = False, print_server: bool = False,
                 log_path=None, dry_run: bool = False, yes: bool = False,
                 quiet: bool = False, verbose: bool = False,
                 controller: Optional[ServiceController] = None,
                 store: Optional[ConfigStore] = None):
        self.roles = {
            "member-server": member_server,
            "domain-controller": domain_controller,
            "print-server": print_server,
        }
        self.directives = directives_for(member_server, domain_controller,
                                         print_server)
        self.dry_run = dry_run
        self.yes = yes
        self.quiet = quiet
        self.verbose = verbose
        # A dry run never writes the log.
        self.log = ChangeLog(log_path) if log_path and not dry_run else None
        self.mutator = ServiceMutator(
            controller or PowerShellServiceController(),
            store or RegistryConfigStore(),
            dry_run=dry_run, verbose=verbose,
        )
        self.results: list = []
        self.skipped_rows = 0
        self._t0 = None

    @property
    def role_label(self) -> str:
        active = [r for r in ROLES if self.roles[r]]
        return ", ".join(active) if active else "no role"

    # ── confirmation ──────────────────────────────────────────────────────

    def _confirm(self, lines: list) -> None:
        """Print what is about to happen and ask for confirmation.

        Exits immediately if the user declines.  Skipped when --yes or
        --dry-run are active.
        """
        if self.yes or self.dry_run:
            return

        print()
        for line in lines:
            print(line)
        print()
        try:
            answer = input("  Proceed? [y/N] ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print()
            _info("Aborted.")
            sys.exit(0)

        if answer != "y":
            _info("Aborted.")
            sys.exit(0)

        print()

    def _run_description(self) -> list:
        disable = sum(1 for d in self.directives
                      if d.target is StartupMode.DISABLED)
        other = len(self.directives) - disable
        lines = [
            f"  {_C.BOLD}About to harden {len(self.directives)} services "
            f"({self.role_label}):{_C.RESET}",
            f"    • Stop each listed service that is running",
            f"    • Disable {disable} services, set {other} to Manual",
        ]
        if self.log is not None:
            lines.append(f"    • Record every change in {self.log.path}")
        else:
            lines.append(f"    {_C.DIM}Logging is off — this run cannot be "
                         f"undone with --undo.{_C.RESET}")
        return lines

    def _check_log(self) -> None:
        """Exit before any change if the change log cannot be appended to."""
        if self.log is None:
            return
        try:
            self.log.ensure_writable()
        except LogNotWritable as exc:
            _error(str(exc))
            sys.exit(1)

    # ── core loop ─────────────────────────────────────────────────────────

    def apply_directives(self, directives: list) -> list:
        """Apply *directives* in order, one service at a time.

        Failures are reported and recorded; they never stop the batch.
        """
        results = []
        for directive in directives:
            result = self.mutator.apply(directive)
            self._report(result)
            if self.log is not None:
                self.log.record(directive.service_id, result.before, result.after)
            results.append(result)
        self.results.extend(results)
        return results

    def _report(self, result: ApplyResult) -> None:
        sid = result.directive.service_id
        target = result.directive.target.label
        if isinstance(result.error, ServiceNotFound):
            _warn(f"{sid}: not found — skipping")
            return
        if result.stop_error is not None and self.verbose:
            _debug(f"{sid}: could not be stopped; setting startup mode anyway")
        if result.error is not None:
            _warn(f"{sid}: {result.error}")
        elif result.compliant:
            if not self.quiet:
                _skip(f"{sid}: already {target}")
        elif not self.dry_run:
            before = mode_label(result.before.startup_mode)
            after = mode_label(result.after.startup_mode)
            _info(f"{_I.BAN}  {sid}: {before} → {after}")

    # ── apply entry point ─────────────────────────────────────────────────

    def run(self) -> None:
        self._t0 = time.monotonic()
        _banner(f"{_I.SHIELD}  svcharden — {self.role_label}")

        if not self.directives:
            _warn("No role selected — nothing to do")
            return

        self._check_log()
        self._confirm(self._run_description())

        _section(_I.COGS, "Services", len(self.directives))
        self.apply_directives(self.directives)
        self._print_summary("svcharden complete")

    # ── undo entry point ──────────────────────────────────────────────────

    def run_undo(self, undo_log) -> None:
        """Replay the "before" mode of every record in *undo_log*, oldest first.

        Each record is replayed independently, so for a service listed more
        than once the last record wins.
        """
        self._t0 = time.monotonic()
        _banner(f"{_I.UNDO}  svcharden --undo")

        source = ChangeLog(undo_log)
        try:
            rows = source.read_rows()
        except (UndoLogNotFound, UnreadableLog) as exc:
            _error(f"{exc} — nothing to undo")
            sys.exit(1)

        directives = []
        for line_no, row in enumerate(rows, start=2):
            try:
                rec = ChangeRecord.from_row(row)
            except HardeningError as exc:
                _warn(f"{source.path}:{line_no}: {exc} — skipping")
                self.skipped_rows += 1
                continue
            directives.append(ServiceDirective(rec.service_id, rec.mode_before))

        _info(f"{_I.FILE}  {len(directives)} records from {source.path}")
        if not directives:
            _warn("No replayable records — nothing to undo")
            return

        self._check_log()
        self._confirm([
            f"  {_C.BOLD}About to restore startup modes from {source.path}:{_C.RESET}",
            f"    • Replay {len(directives)} records, oldest first",
            f"    • Running/stopped state is not restored",
        ])

        _section(_I.UNDO, "Undo: Services", len(directives))
        self.apply_directives(directives)
        self._print_summary("Undo complete")

    # ── summary ───────────────────────────────────────────────────────────

    def _print_summary(self, title: str) -> None:
        elapsed = time.monotonic() - self._t0
        m, s = divmod(int(elapsed), 60)
        _banner(f"{_I.CHECK}  {title} ({m}m {s:02d}s)")

        failed = [r for r in self.results if not r.ok]
        compliant = sum(1 for r in self.results if r.ok and r.compliant)
        pending = [r for r in self.results if r.ok and not r.compliant]

        if self.dry_run:
            _info(f"{_I.COGS}  Would change: {len(pending)}")
        else:
            changed = sum(1 for r in pending if r.changed)
            _info(f"{_I.COGS}  Changed:      {changed}")
        _info(f"{_I.OK}  Compliant:    {compliant}")
        if failed:
            _warn(f"Failed:       {len(failed)} "
                  f"({', '.join(r.directive.service_id for r in failed)})")
        stop_failures = sum(1 for r in self.results if r.stop_error is not None)
        if stop_failures and self.verbose:
            _debug(f"Not stopped:  {stop_failures}")
        if self.skipped_rows:
            _warn(f"Log rows skipped: {self.skipped_rows}")

        if self.log is not None:
            print()
            _info(f"{_I.FILE}  Change log: {self.log.path}")
            _info(f"{_I.UNDO}  To undo:    svcharden.py --undo "
                  f"--undo-log-file {self.log.path}")


# ── CLI ──────────────────────────────────────────────────────────────────────

def default_log_name(hostname: Optional[str] = None,
                     today: Optional[date] = None) -> str:
    hostname = hostname or socket.gethostname()
    today = today or date.today()
    return f"{hostname}_ServiceHardening_{today.isoformat()}.log"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="svcharden",
        description="Apply a role-based service hardening baseline to Windows Server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  svcharden.py --member-server --log                # harden, log to default file
  svcharden.py --domain-controller --log -y         # skip confirmation prompt
  svcharden.py --print-server --dry-run             # preview without changes
  svcharden.py --undo --undo-log-file HOST_ServiceHardening_2026-10-19.log
""",
    )
    roles = p.add_argument_group("roles")
    roles.add_argument("--member-server", action="store_true",
                       help="apply the member server policy")
    roles.add_argument("--domain-controller", action="store_true",
                       help="apply the domain controller policy")
    roles.add_argument("--print-server", action="store_true",
                       help="apply the print server policy")
    p.add_argument(
        "--log", action="store_true",
        help="record every change in a CSV log (needed for --undo later)",
    )
    p.add_argument(
        "--log-file", type=Path, default=None,
        help="log path (default: <hostname>_ServiceHardening_<date>.log)",
    )
    p.add_argument(
        "--undo", action="store_true",
        help="restore startup modes recorded in --undo-log-file",
    )
    p.add_argument(
        "--undo-log-file", type=Path, default=None,
        help="log produced by an earlier --log run",
    )
    p.add_argument(
        "--dry-run", action="store_true",
        help="query services and print what would change, without changing anything",
    )
    p.add_argument(
        "-y", "--yes", action="store_true",
        help="skip interactive confirmation prompt",
    )
    p.add_argument(
        "-q", "--quiet", action="store_true",
        help="suppress already-compliant services; warnings and errors still print",
    )
    p.add_argument(
        "--verbose", action="store_true",
        help="show stop failures and registry fall-backs",
    )
    return p


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.undo:
        if args.undo_log_file is None:
            parser.error("--undo requires --undo-log-file")
    elif not (args.member_server or args.domain_controller or args.print_server):
        parser.error("select a role: --member-server, --domain-controller "
                     "or --print-server")

    if sys.platform != "win32" and not args.dry_run:
        _error("svcharden must run on Windows (try --dry-run elsewhere)")
        sys.exit(1)

    log_path = None
    if args.log:
        log_path = args.log_file or Path(default_log_name())

    hardener = ServiceHardening(
        member_server=args.member_server,
        domain_controller=args.domain_controller,
        print_server=args.print_server,
        log_path=log_path,
        dry_run=args.dry_run,
        yes=args.yes,
        quiet=args.quiet,
        verbose=args.verbose,
    )

    if args.undo:
        hardener.run_undo(args.undo_log_file)
    else:
        hardener.run()


if __name__ == "__main__":
    main()
