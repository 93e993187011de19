#!/usr/bin/env python3
import os
import re
import shlex
import shutil
import subprocess
import sys
import time
import argparse
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table


# External tools expected: hdiutil, drutil, du, caffeinate (optional)
# This script creates (or reuses) a disc image, proves it readable, and burns it.

console = Console()
err_console = Console(stderr=True)
load_dotenv()

DEFAULT_VOLUME = os.getenv("BURN_VOLUME", "BD_BACKUP")
DEFAULT_MEDIUM = os.getenv("BURN_MEDIUM", "bdxl").strip().lower()
DEFAULT_SPEED = os.getenv("BURN_SPEED", "").strip()
DEFAULT_STAGE = os.getenv("BURN_STAGE", "").strip()
KEEP_AWAKE = os.getenv("BURN_KEEP_AWAKE", "1").strip().lower() not in {"0", "false", "no", "off"}
STRICT_DETACH = os.getenv("BURN_STRICT_DETACH", "0").strip().lower() in {"1", "true", "yes", "on"}

REQUIRED_TOOLS = ("hdiutil", "drutil", "du")
DETACH_ATTEMPTS = 3
DETACH_PAUSE_SECONDS = 1.0
MIB = 1024 * 1024


def safe_print(text, markup: bool = True, **kwargs):
    """Print an informational line through the shared Rich console."""
    console.print(text, markup=markup, **kwargs)


def print_error(message: str) -> None:
    err_console.print(f"[bold red]ERROR:[/bold red] {escape(message)}", highlight=False)


# ========== ERRORS ==========

class BurnerError(Exception):
    """Base class for every fatal condition; carries a reason code and exit status."""

    exit_code = 1

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class ArgumentError(BurnerError):
    exit_code = 2


class PreconditionError(BurnerError):
    exit_code = 3


class CapacityError(BurnerError):
    exit_code = 4


class CreationError(BurnerError):
    exit_code = 5


class ValidationError(BurnerError):
    exit_code = 6


class DeviceError(BurnerError):
    exit_code = 7


class BurnFailedError(BurnerError):
    exit_code = 8


class ResourceCleanupWarning(BurnerError):
    """A temporary device stayed attached. Only raised when strict detach is on."""

    exit_code = 9


# ========== DATA STRUCTURES ==========

@dataclass(frozen=True)
class MediumProfile:
    name: str
    capacity_bytes: int
    margin_bytes: int

    @property
    def limit_bytes(self) -> int:
        return self.capacity_bytes - self.margin_bytes


PROFILES: Dict[str, MediumProfile] = {
    "dvd": MediumProfile("dvd", 4_710_000_000, 100 * MIB),
    "bdxl": MediumProfile("bdxl", 100_100_000_000, 300 * MIB),
}


@dataclass
class ImageArtifact:
    path: Path
    size_bytes: int
    validated: bool = False


@dataclass
class ValidationReport:
    device: str
    detached: bool
    warning: Optional[ResourceCleanupWarning] = None


@dataclass(frozen=True)
class DriveState:
    device_path: Optional[str] = None
    media_type: Optional[str] = None

    @property
    def ready(self) -> bool:
        return bool(self.device_path and self.media_type)


@dataclass
class BurnRequest:
    image: ImageArtifact
    speed: Optional[int]
    drive: DriveState
    dry_run: bool = False


@dataclass
class AttemptOutcome:
    succeeded: bool
    used_fallback: bool
    results: List[Tuple[int, str, str]]

    @property
    def last(self) -> Tuple[int, str, str]:
        return self.results[-1]


@dataclass
class StepState:
    name: str
    status: str = "pending"  # pending|running|done|error|skipped
    message: str = ""


@dataclass
class BurnOptions:
    source: Optional[Path] = None
    stage: Optional[Path] = None
    image: Optional[Path] = None
    volume: str = "BD_BACKUP"
    medium: str = "bdxl"
    speed: Optional[int] = None
    dry_run: bool = False
    strict_detach: bool = False
    keep_awake: bool = True


class RunState(Enum):
    MODE_SELECT = "mode_select"
    CREATING = "creating"
    REUSING = "reusing"
    VALIDATED = "validated"
    DRY_RUN_EXIT = "dry_run_exit"
    DEVICE_CHECK = "device_check"
    BURNING = "burning"
    DONE = "done"


@dataclass
class RunResult:
    image: ImageArtifact
    state: RunState
    burned: bool = False
    used_fallback: bool = False
    warnings: List[ResourceCleanupWarning] = field(default_factory=list)


# ========== PROCESS HELPERS ==========

def run_cmd(cmd: str, capture: bool = True) -> Tuple[int, str, str]:
    if not capture:
        # Let long-running tools (burns) talk to the terminal directly
        proc = subprocess.Popen(cmd, shell=True, text=True)
        proc.wait()
        out, err = "", ""
    else:
        proc = subprocess.Popen(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        out, err = proc.communicate()
    return proc.returncode, out, err


def tool_available(name: str) -> bool:
    """Check if a command-line tool is available"""
    rc, out, _ = run_cmd(f"command -v {shlex.quote(name)}")
    return rc == 0 and out.strip() != ""


def require_tools(names=REQUIRED_TOOLS) -> None:
    missing = [name for name in names if not tool_available(name)]
    if missing:
        raise PreconditionError("MissingCommand", f"Missing command(s): {', '.join(missing)}")


def run_with_fallback(
    primary: Callable[[], Tuple[int, str, str]],
    fallback: Callable[[], Tuple[int, str, str]],
) -> AttemptOutcome:
    """Run ``primary``; only if it exits non-zero, run ``fallback`` exactly once."""
    first = primary()
    if first[0] == 0:
        return AttemptOutcome(succeeded=True, used_fallback=False, results=[first])
    second = fallback()
    return AttemptOutcome(succeeded=second[0] == 0, used_fallback=True, results=[first, second])


def diagnostic_text(out: str, err: str) -> str:
    return "\n".join(part.strip() for part in (out, err) if part and part.strip())


def human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1000.0:
            return f"{size:.2f} {unit}"
        size /= 1000.0
    return f"{size:.2f} PB"


@contextmanager
def keep_awake(enabled: bool = True) -> Iterator[Optional[subprocess.Popen]]:
    """Keep the host awake for the duration of the block.

    ``caffeinate`` is terminated on every exit path, including interrupts.
    """
    proc: Optional[subprocess.Popen] = None
    if enabled:
        if tool_available("caffeinate"):
            proc = subprocess.Popen(["caffeinate", "-dimsu"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            safe_print("[yellow][WARN] caffeinate not found; the system may sleep during long operations.[/yellow]")
    try:
        yield proc
    finally:
        if proc is not None and proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()


# ========== CAPACITY GUARD ==========

def directory_size_bytes(path: Path) -> int:
    """Allocated size of ``path`` in bytes, as reported by ``du -sk``."""
    rc, out, err = run_cmd(f"du -sk {shlex.quote(str(path))}")
    fields = out.split()
    if fields and fields[0].isdigit():
        if rc != 0:
            # du still prints a total when some entries are unreadable
            safe_print(f"[yellow][WARN] du reported problems under {escape(str(path))}: {escape(err.strip())}[/yellow]")
        return int(fields[0]) * 1024
    return directory_size_bytes_python(path)


def directory_size_bytes_python(path: Path) -> int:
    """Allocation-based size computed from ``st_blocks``; hard links count once."""
    seen = set()
    total = 0

    def account(entry: str) -> None:
        nonlocal total
        try:
            st = os.lstat(entry)
        except OSError:
            return
        key = (st.st_dev, st.st_ino)
        if key in seen:
            return
        seen.add(key)
        total += getattr(st, "st_blocks", 0) * 512 or st.st_size

    account(str(path))
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            account(os.path.join(root, name))
    return total


def stage_free_bytes(path: Path) -> int:
    return shutil.disk_usage(str(path)).free


def check_stage_writable(stage: Path) -> None:
    probe = stage / f".burn_write_test_{os.getpid()}"
    try:
        probe.touch()
    except OSError as exc:
        raise PreconditionError("StageNotWritable", f"Cannot write to staging folder: {stage} ({exc})") from exc
    try:
        probe.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise PreconditionError("StageNotWritable", f"Cannot remove probe file in staging folder: {probe} ({exc})") from exc


def check_capacity(profile: MediumProfile, source_size_bytes: int, stage_free_bytes: int) -> int:
    """Guard image creation against the medium and the stage volume.

    Returns the number of stage bytes the build needs. Raises
    ``CapacityError`` with reason ``SourceTooLarge`` when the source does not
    fit the medium minus its margin, or ``InsufficientStageSpace`` when the
    stage volume cannot hold the image plus margin.
    """
    if source_size_bytes >= profile.limit_bytes:
        raise CapacityError(
            "SourceTooLarge",
            f"Source too large for mode={profile.name}: {source_size_bytes} bytes "
            f"(limit {profile.limit_bytes} bytes)",
        )
    needed = source_size_bytes + profile.margin_bytes
    if stage_free_bytes <= needed:
        raise CapacityError(
            "InsufficientStageSpace",
            f"Not enough free space on stage volume: {stage_free_bytes} bytes free, "
            f"more than {needed} bytes needed",
        )
    return needed


# ========== IMAGE BUILDER ==========

def image_output_path(stage: Path, label: str, now: Optional[datetime] = None) -> Path:
    ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return stage / f"{label}_{ts}.iso"


def makehybrid_command(profile: MediumProfile, source: Path, output: Path, label: str) -> str:
    out_q = shlex.quote(str(output))
    src_q = shlex.quote(str(source))
    label_q = shlex.quote(label)
    if profile.name == "dvd":
        return f"hdiutil makehybrid -o {out_q} {src_q} -iso -joliet -default-volume-name {label_q}"
    # UDF + ISO/Joliet for BD data compatibility
    return f"hdiutil makehybrid -o {out_q} {src_q} -udf -udf-volume-name {label_q} -iso -joliet"


def normalize_image_path(expected: Path) -> Path:
    """hdiutil may append an extra .iso in some environments; fold it back."""
    doubled = Path(str(expected) + ".iso")
    if not expected.is_file() and doubled.is_file():
        try:
            os.rename(doubled, expected)
        except OSError as exc:
            raise CreationError("ImageRenameFailed", f"Cannot rename {doubled} to {expected}: {exc}") from exc
    return expected


def build_image(source: Path, stage: Path, profile: MediumProfile, label: str, now: Optional[datetime] = None) -> ImageArtifact:
    img = image_output_path(stage, label, now)

    safe_print("[INFO] Creating image...")
    safe_print(f"[INFO] Source: {escape(str(source))}")
    safe_print(f"[INFO] Stage : {escape(str(stage))}")
    safe_print(f"[INFO] Out   : {escape(str(img))}")

    rc, out, err = run_cmd(makehybrid_command(profile, source, img, label))
    if rc != 0:
        raise CreationError("ImageToolFailed", f"hdiutil makehybrid failed (exit {rc}): {diagnostic_text(out, err)}")

    normalize_image_path(img)
    if not img.is_file():
        raise CreationError("ImageMissingAfterCreation", f"Image file not found after creation: {img}")
    size = img.stat().st_size
    if size == 0:
        raise CreationError("ImageEmpty", f"Created image is empty: {img}")
    return ImageArtifact(path=img, size_bytes=size)


# ========== IMAGE VALIDATOR ==========

def require_image_file(path: Path) -> ImageArtifact:
    if not path.is_file():
        raise PreconditionError("ImageNotFound", f"Image not found: {path}")
    size = path.stat().st_size
    if size == 0:
        raise PreconditionError("ImageEmpty", f"Image is empty: {path}")
    return ImageArtifact(path=path, size_bytes=size)


def attach_readonly(path: Path) -> str:
    # Attaching proves readability; `hdiutil imageinfo` can fail on large raw/UDF hybrids.
    rc, out, err = run_cmd(f"hdiutil attach -nomount -readonly {shlex.quote(str(path))}")
    if rc != 0:
        raise ValidationError("ImageUnreadable", f"Invalid/unreadable image: {path}\n{diagnostic_text(out, err)}")
    lines = out.splitlines()
    fields = lines[0].split() if lines else []
    if not fields:
        raise ValidationError(
            "NoDeviceFromAttach",
            f"hdiutil attach returned no device for image: {path}\n{diagnostic_text(out, err)}",
        )
    return fields[0]


def detach_device(device: str, attempts: int = DETACH_ATTEMPTS, pause: float = DETACH_PAUSE_SECONDS) -> bool:
    dev_q = shlex.quote(device)
    for attempt in range(1, attempts + 1):
        outcome = run_with_fallback(
            lambda: run_cmd(f"hdiutil detach {dev_q}"),
            lambda: run_cmd(f"hdiutil detach -force {dev_q}"),
        )
        if outcome.succeeded:
            return True
        if attempt < attempts:
            time.sleep(pause)
    return False


def validate_image(artifact: ImageArtifact) -> ValidationReport:
    """Attach ``artifact`` read-only, then release the temporary device.

    The image counts as valid once the attach succeeds. A detach that still
    fails after the retries is returned as a warning on the report.
    """
    require_image_file(artifact.path)
    device = attach_readonly(artifact.path)
    detached = False
    try:
        artifact.validated = True
    finally:
        detached = detach_device(device)

    warning = None
    if not detached:
        warning = ResourceCleanupWarning("DetachFailed", f"Failed to detach temporary device: {device}")
    return ValidationReport(device=device, detached=detached, warning=warning)


# ========== DEVICE READINESS PROBE ==========

_NAME_RE = re.compile(r"Name:\s*(/dev/disk\d+)")
_TYPE_RE = re.compile(r"Type:\s*(.*)")


def parse_drive_status(text: str) -> DriveState:
    """Translate a ``drutil status`` report into a DriveState.

    Only the first drive is considered. Either field is None when its line is
    missing; "No Media Inserted" counts as no media.
    """
    device: Optional[str] = None
    media: Optional[str] = None
    type_seen = False
    for line in (text or "").splitlines():
        if device is None:
            m = _NAME_RE.search(line)
            if m:
                device = m.group(1)
        # Only the first Type: line counts, whatever it says
        if not type_seen and "Type:" in line:
            type_seen = True
            value = _TYPE_RE.search(line).group(1)
            # Type and Name can share a line
            value = value.split("Name:")[0].strip()
            if value and not value.lower().startswith("no media"):
                media = value.split()[0]
    return DriveState(device_path=device, media_type=media)


def probe_drive() -> Tuple[DriveState, str]:
    # drutil prints nothing when no drive is attached; that is not an error here
    _, out, _ = run_cmd("drutil status")
    return parse_drive_status(out), out


# ========== BURN ==========

def burn_commands(request: BurnRequest) -> Tuple[str, str]:
    img_q = shlex.quote(str(request.image.path))
    speed = f" -speed {int(request.speed)}" if request.speed else ""
    primary = f"drutil burn -drive {shlex.quote(request.drive.device_path or '')}{speed} {img_q}"
    fallback = f"drutil burn{speed} {img_q}"
    return primary, fallback


def burn_image(request: BurnRequest) -> AttemptOutcome:
    primary, fallback = burn_commands(request)
    outcome = run_with_fallback(
        lambda: run_cmd(primary, capture=False),
        lambda: run_cmd(fallback, capture=False),
    )
    if not outcome.succeeded:
        rc, out, err = outcome.last
        detail = diagnostic_text(out, err) or "see drutil output above"
        raise BurnFailedError("BurnFailed", f"drutil burn failed on device and default drive (exit {rc}): {detail}")
    return outcome


# ========== ORCHESTRATOR ==========

class BurnOrchestrator:
    """Drives one create-or-reuse, validate, probe and burn run."""

    STEP_ORDER = ["mode", "capacity", "create", "validate", "device", "burn"]

    def __init__(self, options: BurnOptions):
        self.options = options
        self.state = RunState.MODE_SELECT
        self.history: List[RunState] = [RunState.MODE_SELECT]
        self.warnings: List[ResourceCleanupWarning] = []
        self.steps: Dict[str, StepState] = {
            "mode": StepState("Select mode"),
            "capacity": StepState("Capacity guard"),
            "create": StepState("Create image"),
            "validate": StepState("Validate image"),
            "device": StepState("Check drive/media"),
            "burn": StepState("Burn"),
        }

    def _enter(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)

    def _step(self, key: str, status: str, message: str = "") -> None:
        self.steps[key].status = status
        self.steps[key].message = message

    def render_table(self) -> Table:
        t = Table(title="Disc burn")
        t.add_column("Step")
        t.add_column("Status")
        t.add_column("Message")
        status_style = {
            "pending": "grey50",
            "running": "yellow",
            "done": "green",
            "error": "red",
            "skipped": "blue",
        }
        for key in self.STEP_ORDER:
            s = self.steps[key]
            mark = {
                "pending": "[ ]",
                "running": "[~]",
                "done": "[x]",
                "error": "[!]",
                "skipped": "[-]",
            }[s.status]
            t.add_row(s.name, f"[{status_style[s.status]}]{escape(mark)} {s.status}[/]", escape(s.message))
        return t

    def run(self) -> RunResult:
        try:
            result = self._run()
        except BurnerError as exc:
            running = next((k for k in self.STEP_ORDER if self.steps[k].status == "running"), None)
            if running:
                self._step(running, "error", exc.reason)
            safe_print(self.render_table())
            raise
        safe_print(self.render_table())
        return result

    def _run(self) -> RunResult:
        opts = self.options
        self._step("mode", "running")
        if opts.image is not None:
            if opts.source is not None or opts.stage is not None:
                raise ArgumentError("ConflictingArguments", "--image cannot be combined with --source/--stage")
            self._step("mode", "done", "reuse")
            image = self._reuse(opts.image)
        else:
            if opts.source is None:
                raise ArgumentError("MissingArguments", "Missing --source (or provide --image)")
            if opts.stage is None:
                raise ArgumentError("MissingArguments", "Missing --stage (or provide --image)")
            self._step("mode", "done", f"create ({opts.medium})")
            image = self._create(opts.source, opts.stage)

        self._enter(RunState.VALIDATED)

        if opts.dry_run:
            self._enter(RunState.DRY_RUN_EXIT)
            self._step("device", "skipped", "dry run")
            self._step("burn", "skipped", "dry run")
            safe_print("[bold yellow][DRY-RUN][/bold yellow] Burn skipped.")
            safe_print(f"[bold yellow][DRY-RUN][/bold yellow] Image: {escape(str(image.path))}")
            return RunResult(image=image, state=self.state, warnings=list(self.warnings))

        drive = self._check_device()
        request = BurnRequest(image=image, speed=opts.speed, drive=drive, dry_run=opts.dry_run)

        self._enter(RunState.BURNING)
        self._step("burn", "running")
        safe_print(f"[INFO] Burning image: {escape(str(image.path))}")
        outcome = burn_image(request)
        self._step("burn", "done", "default drive (fallback)" if outcome.used_fallback else drive.device_path or "")
        if outcome.used_fallback:
            safe_print("[yellow][WARN] Burn on the detected device failed; default drive selection succeeded.[/yellow]")

        self._enter(RunState.DONE)
        safe_print("[bold green][INFO] Burn completed.[/bold green]")
        return RunResult(
            image=image,
            state=self.state,
            burned=True,
            used_fallback=outcome.used_fallback,
            warnings=list(self.warnings),
        )

    def _reuse(self, path: Path) -> ImageArtifact:
        self._enter(RunState.REUSING)
        self._step("capacity", "skipped", "reuse")
        self._step("create", "skipped", "reuse")
        self._step("validate", "running")
        artifact = require_image_file(path)
        self._validate(artifact)
        safe_print(f"[INFO] Reusing existing image: {escape(str(artifact.path))}")
        return artifact

    def _create(self, source: Path, stage: Path) -> ImageArtifact:
        opts = self.options
        self._enter(RunState.CREATING)
        self._step("capacity", "running")
        if not source.is_dir():
            raise PreconditionError("SourceNotFound", f"Source folder not found: {source}")
        if not stage.is_dir():
            raise PreconditionError("StageNotFound", f"Staging folder not found: {stage}")
        check_stage_writable(stage)

        profile = PROFILES[opts.medium]
        src_bytes = directory_size_bytes(source)
        free_bytes = stage_free_bytes(stage)
        needed = check_capacity(profile, src_bytes, free_bytes)
        self._step("capacity", "done", f"{human_size(src_bytes)} source, {human_size(free_bytes)} free")
        safe_print(
            f"[INFO] Source size: {src_bytes} bytes; stage free: {free_bytes} bytes "
            f"(needs > {needed}, limit {profile.limit_bytes})"
        )

        self._step("create", "running")
        artifact = build_image(source, stage, profile, opts.volume)
        self._step("create", "done", artifact.path.name)

        self._step("validate", "running")
        self._validate(artifact)
        safe_print(f"[INFO] Image ready: {escape(str(artifact.path))}")
        safe_print(f"[INFO] Image size : {artifact.size_bytes} bytes ({human_size(artifact.size_bytes)})")
        return artifact

    def _validate(self, artifact: ImageArtifact) -> None:
        report = validate_image(artifact)
        if report.warning is not None:
            if self.options.strict_detach:
                raise report.warning
            self.warnings.append(report.warning)
            safe_print(f"[yellow][WARN] {escape(report.warning.message)} (detach it manually with hdiutil detach)[/yellow]")
            self._step("validate", "done", f"readable; {report.device} still attached")
        else:
            self._step("validate", "done", f"readable via {report.device}")

    def _check_device(self) -> DriveState:
        self._enter(RunState.DEVICE_CHECK)
        self._step("device", "running")
        drive, status = probe_drive()
        safe_print("[INFO] Current drive/media:")
        safe_print(escape(status.rstrip()) or "[dim](no drutil output)[/dim]")
        if not drive.device_path:
            raise DeviceError("NoOpticalDevice", "No optical device/media found. Reconnect drive and insert disc.")
        if not drive.media_type:
            raise DeviceError("NoWritableMedia", "No media type detected. Insert writable media.")
        self._step("device", "done", f"{drive.device_path} ({drive.media_type})")
        safe_print(f"[INFO] Using device: {drive.device_path} (media: {escape(drive.media_type)})")
        return drive


# ========== CLI ==========

def _positive_int(value: str) -> int:
    try:
        speed = int(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"invalid speed: {value!r}")
    if speed <= 0:
        raise argparse.ArgumentTypeError(f"speed must be positive: {value!r}")
    return speed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bd-burner",
        description="Create (or reuse) a disc image, verify it attaches read-only, and burn it with drutil",
        epilog=(
            "Examples:\n"
            "  bd-burner -s /Volumes/Data/Photos -t /Volumes/Stage --bdxl -x 2 -v \"Backup Photos1\"\n"
            "  bd-burner --image /Volumes/Stage/BD_BACKUP_20250101_120000.iso -x 2\n"
            "  bd-burner --image /Volumes/Stage/BD_BACKUP_20250101_120000.iso --dry-run"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    create = parser.add_argument_group("create mode")
    create.add_argument("-s", "--source", type=Path, help="Source folder to write to disc")
    create.add_argument("-t", "--stage", type=Path, help="Writable folder where the image is created (env: BURN_STAGE)")
    create.add_argument("-v", "--volume", default=DEFAULT_VOLUME, help="Volume label (default: %(default)s)")
    medium = create.add_mutually_exclusive_group()
    medium.add_argument("--bdxl", dest="medium", action="store_const", const="bdxl", help="Capacity guard for 100GB BDXL (default)")
    medium.add_argument("--dvd", dest="medium", action="store_const", const="dvd", help="Capacity guard for DVD 4.7GB")
    parser.set_defaults(medium=DEFAULT_MEDIUM)

    reuse = parser.add_argument_group("reuse mode")
    reuse.add_argument("--image", type=Path, help="Existing image file to burn (skips creation)")

    parser.add_argument("-x", "--speed", type=_positive_int, default=None, help="Burn speed (use a supported speed, e.g. 2)")
    parser.add_argument("--dry-run", action="store_true", help="Do everything except the actual burn")
    parser.add_argument(
        "--strict-detach",
        action="store_true",
        default=STRICT_DETACH,
        help="Abort when the temporary validation device cannot be detached",
    )
    parser.add_argument(
        "--no-keep-awake",
        dest="keep_awake",
        action="store_false",
        default=KEEP_AWAKE,
        help="Do not run caffeinate during the run",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> BurnOptions:
    medium = (args.medium or "").strip().lower()
    if medium not in PROFILES:
        raise ArgumentError("InvalidMedium", f"Invalid mode: {args.medium} (expected dvd or bdxl)")
    volume = (args.volume or "").strip()
    if not volume:
        raise ArgumentError("EmptyVolumeLabel", "Volume label must not be empty")
    speed = args.speed
    if speed is None and DEFAULT_SPEED:
        try:
            speed = _positive_int(DEFAULT_SPEED)
        except argparse.ArgumentTypeError as exc:
            raise ArgumentError("InvalidSpeed", f"BURN_SPEED: {exc}") from exc

    # BURN_STAGE only applies to create mode
    stage = args.stage
    if stage is None and args.image is None and DEFAULT_STAGE:
        stage = Path(DEFAULT_STAGE)

    return BurnOptions(
        source=args.source,
        stage=stage,
        image=args.image,
        volume=volume,
        medium=medium,
        speed=speed,
        dry_run=args.dry_run,
        strict_detach=args.strict_detach,
        keep_awake=args.keep_awake,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        options = options_from_args(args)
        require_tools()
        with keep_awake(options.keep_awake):
            result = BurnOrchestrator(options).run()
    except BurnerError as exc:
        print_error(exc.message)
        return exc.exit_code
    except KeyboardInterrupt:
        safe_print("\n[red]Interrupted by user[/red]")
        return 130

    if result.warnings:
        safe_print(Panel.fit(
            "\n".join(escape(w.message) for w in result.warnings),
            title="Cleanup warnings",
            style="yellow",
        ))
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
