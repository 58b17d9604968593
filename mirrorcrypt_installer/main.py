from __future__ import annotations

import argparse
import getpass
import logging
import os
import signal
import sys
from typing import Any, Callable, Dict, Optional

from .config import InstallerConfig, load_config
from .errors import ConfigurationError, ConflictError, InstallerError, ProvisioningInterrupted
from .lib.command import missing_tools
from .lib.conflicts import scan_conflicts
from .lib.env import PATHS, REQUIRED_TOOLS
from .lib.prompts import confirm_destruction, prompt_secret
from .lib.teardown import safe_unmount, teardown
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import RunContext, run_pipeline
from .plan import ProvisioningPlan, build_plan, plan_summary
from .state_store import finish_journal, new_journal, record_error
from .steps import (
    BaseSystemStep,
    BootloaderStep,
    ChrootPackagesStep,
    ConfigureSystemStep,
    CreateUserStep,
    CrypttabStep,
    EncryptionStep,
    FilesystemStep,
    MountStep,
    PartitionStep,
    RedundancyStep,
)

logger = logging.getLogger(__name__)

DEFAULT_JOURNAL_PATH = PATHS.journal_default

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BY_SIGNAL = {signal.SIGINT: 130, signal.SIGTERM: 143}
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_steps():
    return [
        PartitionStep(),
        RedundancyStep(),
        EncryptionStep(),
        FilesystemStep(),
        MountStep(),
        BaseSystemStep(),
        ConfigureSystemStep(),
        ChrootPackagesStep(),
        CreateUserStep(),
        CrypttabStep(),
        BootloaderStep(),
    ]


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog="mirrorcrypt-installer",
        description="Provision an encrypted (optionally RAID1-mirrored) btrfs system onto raw disks.",
    )
    p.add_argument("--config", default=None, help="YAML configuration file")
    p.add_argument("--device", dest="devices", action="append", default=None, help="Target drive (repeat for RAID1)")
    p.add_argument("--hostname", default=None)
    p.add_argument("--username", default=None)
    p.add_argument("--swap-gb", dest="swap_size_gb", type=int, default=None, help="Swap file size in GB (0 disables)")
    p.add_argument("--distribution", default=None, help="Distribution codename for debootstrap")
    p.add_argument("--archive-url", default=None, help="Package archive URL for debootstrap")
    p.add_argument("--mount-point", default=None)
    p.add_argument(
        "--no-nvidia",
        dest="install_nvidia_drivers",
        action="store_const",
        const=False,
        default=None,
        help="Skip NVIDIA driver installation",
    )
    p.add_argument("--force", action="store_true", help="Tear down existing RAID/LUKS/partitions before installing")
    p.add_argument("--cleanup", action="store_true", help="Only tear down the target drives and exit")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--journal", default=DEFAULT_JOURNAL_PATH, help="Path to run journal (json|yaml)")
    p.add_argument("--verbose", action="store_true", help="Debug logging, including command output")
    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    keys = (
        "devices",
        "hostname",
        "username",
        "swap_size_gb",
        "distribution",
        "archive_url",
        "mount_point",
        "install_nvidia_drivers",
    )
    return {k: getattr(args, k) for k in keys if getattr(args, k) is not None}


def is_root() -> bool:
    return os.geteuid() == 0


def preflight() -> None:
    if not is_root():
        raise ConfigurationError("This installer must be run as root")
    missing = missing_tools(REQUIRED_TOOLS)
    if missing:
        raise ConfigurationError(f"Required tools not found: {', '.join(missing)}")


def _raise_interrupted(signum, frame) -> None:
    raise ProvisioningInterrupted(signum)


def _set_signal_handlers(handler) -> Dict[int, Any]:
    previous = {}
    for sig in HANDLED_SIGNALS:
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def _unwind(config: InstallerConfig, state: Dict[str, Any]) -> None:
    """Full teardown, exactly once. Signals must already be ignored."""

    logger.info("Running teardown after failure...")
    report = teardown(config)
    state["teardown"] = report.as_dict()
    if not report.clean:
        logger.warning("Some resources are still present; manual intervention may be required")


def print_summary(config: InstallerConfig, plan: ProvisioningPlan) -> None:
    lines = [
        "Installation completed successfully!",
        f"  System:     {config.distribution} ({plan.architecture})",
    ]
    if plan.redundancy_enabled:
        lines.append(f"  Storage:    RAID1 across {len(plan.devices)} drives -> LUKS -> btrfs")
        lines.append(f"  Bootloader: installed on {len(plan.devices)} drives")
    else:
        lines.append(f"  Storage:    single drive {plan.first_device} -> LUKS -> btrfs")
    lines.append(f"  Swap:       {plan.swap_size_gb}GB swapfile" if plan.swap_enabled else "  Swap:       disabled")
    lines.append(f"  Hostname:   {config.hostname}, user {config.username}, SSH enabled")
    if config.install_nvidia_drivers:
        lines.append(f"  NVIDIA:     {config.nvidia_driver_package}")
    lines.append("Remember: you will be asked for the LUKS passphrase at boot.")
    print("\n".join(lines))


def provision(
    config: InstallerConfig,
    plan: ProvisioningPlan,
    state: Dict[str, Any],
    *,
    resolve_conflicts: bool = False,
    steps=None,
) -> int:
    """Run the construction stages with the teardown unwind armed throughout."""

    ctx = RunContext(config=config, plan=plan)
    previous = _set_signal_handlers(_raise_interrupted)
    try:
        if resolve_conflicts:
            logger.warning("Existing RAID/LUKS/partition state found, cleaning up (--force)")
            state["pre_teardown"] = teardown(config).as_dict()
            remaining = scan_conflicts(plan.devices)
            if remaining.has_conflicts:
                raise ConflictError("Conflicts remain after cleanup: " + "; ".join(remaining.describe()))

        result = run_pipeline(ctx=ctx, state=state, steps=steps if steps is not None else build_steps())
        state = result.state
        # Disarmed: nothing left to unwind once the last stage has succeeded.
        _set_signal_handlers(signal.SIG_IGN)
    except ProvisioningInterrupted as e:
        _set_signal_handlers(signal.SIG_IGN)
        logger.error("Installation interrupted by signal %d", e.signum)
        record_error(state, e)
        _unwind(config, state)
        return EXIT_BY_SIGNAL.get(e.signum, EXIT_FAILURE)
    except Exception as e:
        _set_signal_handlers(signal.SIG_IGN)
        logger.error("Installation failed: %s", e)
        record_error(state, e)
        _unwind(config, state)
        return EXIT_FAILURE
    else:
        state["safe_unmount"] = safe_unmount(config).as_dict()
        print_summary(config, plan)
        return EXIT_OK
    finally:
        _restore_signal_handlers(previous)


def cleanup(
    config: InstallerConfig,
    state: Dict[str, Any],
    *,
    input_fn: Callable[[str], str] = input,
) -> int:
    if not config.devices:
        raise ConfigurationError("No target drives specified (use --device or the config file)")
    if not confirm_destruction(config.devices, input_fn=input_fn):
        logger.info("Cleanup cancelled by user")
        state["outcome_detail"] = "cancelled"
        return EXIT_FAILURE

    previous = _set_signal_handlers(signal.SIG_IGN)
    try:
        report = teardown(config)
    finally:
        _restore_signal_handlers(previous)
    state["teardown"] = report.as_dict()
    if not report.clean:
        logger.warning("Some resources are still present; manual intervention may be required")
    return EXIT_OK


def main(
    argv: Optional[list[str]] = None,
    *,
    input_fn: Callable[[str], str] = input,
    getpass_fn: Callable[[str], str] = getpass.getpass,
) -> int:
    args = build_parser().parse_args(argv)

    configure_logging(log_path=args.log, level=logging.DEBUG if args.verbose else logging.INFO)

    state = new_journal("cleanup" if args.cleanup else ("force" if args.force else "install"))
    rc = EXIT_FAILURE
    try:
        preflight()
        config = load_config(args.config, _overrides(args))

        if args.cleanup:
            rc = cleanup(config, state, input_fn=input_fn)
            return rc

        plan = build_plan(config)
        state["plan"] = plan_summary(plan)

        conflicts = scan_conflicts(plan.devices)
        if conflicts.has_conflicts:
            for line in conflicts.describe():
                logger.warning("Conflict: %s", line)
            if not args.force:
                raise ConflictError(
                    "Target drives carry existing RAID/LUKS/partition state. "
                    "Run with --cleanup first, or use --force to tear it down automatically."
                )

        if not confirm_destruction(plan.devices, input_fn=input_fn):
            logger.info("Installation cancelled by user")
            state["outcome_detail"] = "cancelled"
            return rc

        config = config.with_secrets(
            luks_password=config.luks_password or prompt_secret("encryption password", getpass_fn=getpass_fn),
            user_password=config.user_password or prompt_secret("user password", getpass_fn=getpass_fn),
        )

        rc = provision(config, plan, state, resolve_conflicts=conflicts.has_conflicts)
        return rc
    except (ConfigurationError, ConflictError) as e:
        logger.error("%s", e)
        record_error(state, e)
        return rc
    except KeyboardInterrupt as e:
        # Nothing destructive has started yet.
        logger.error("Interrupted before installation started")
        record_error(state, e)
        rc = EXIT_BY_SIGNAL[signal.SIGINT]
        return rc
    except InstallerError as e:
        logger.error("%s", e)
        record_error(state, e)
        return rc
    finally:
        finish_journal(args.journal, state, "success" if rc == EXIT_OK else "failure")


if __name__ == "__main__":
    raise SystemExit(main())
