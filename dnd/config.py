# dnd/config.py
import socket
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DND_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Spool / process files
    spool_dir: Path = Path("/var/spool/dnd")
    pid_file: Path = Path("/var/run/dnd/dnd.pid")
    log_file: Path | None = Path("/var/log/dnd/dnd.log")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # JSON lines on the console instead of colored text

    # Relay transport (external copy tool, invoked as `<scp_path> <opts> file host:file`)
    scp_path: str = "/usr/bin/scp"
    scp_options: list[str] = ["-q", "-p"]

    # Identity: overrides socket.gethostname() when matching dst_host lines
    hostname: str | None = None

    # Daemon lifecycle
    foreground: bool = False            # Skip fork/setsid (supervisors, tests)
    daemon_umask: int = 0               # File-creation mask set after fork
    shutdown_grace_seconds: float = 5.0  # How long an in-flight entry may finish after a signal

    # Filesystem watch
    watch_polling: bool = False          # Directory-diff polling instead of inotify
    watch_polling_interval: float = 1.0  # Seconds between polling snapshots

    @property
    def local_hostname(self) -> str:
        return self.hostname or socket.gethostname()

    @property
    def queue_dir(self) -> Path:
        return self.spool_dir / "queue"


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not Path(s.scp_path).is_absolute():
        warnings.append(f"scp_path={s.scp_path!r} is relative; it will be resolved via PATH at relay time.")

    if s.daemon_umask & 0o070:
        warnings.append(
            f"daemon_umask={oct(s.daemon_umask)} removes group bits; "
            "producers in the spool group may not be able to write to the queue."
        )

    if s.log_file is None and not s.foreground:
        warnings.append("log_file is not set and the daemon detaches: all log output goes to /dev/null.")

    if s.watch_polling:
        warnings.append(
            "watch_polling=True: entries are picked up on create/modify snapshots, "
            "not on close-after-write."
        )

    return warnings


def validate_or_warn(s: "Settings") -> list[str]:
    """
    Hard-fail on settings the daemon cannot run with, return warnings for the rest.
    """
    errors: list[str] = []

    if not s.spool_dir.is_absolute():
        errors.append(f"spool_dir must be an absolute path (got {s.spool_dir})")
    if not s.pid_file.is_absolute():
        errors.append(f"pid_file must be an absolute path (got {s.pid_file})")
    if s.shutdown_grace_seconds < 0:
        errors.append("shutdown_grace_seconds must be >= 0")
    if s.watch_polling_interval <= 0:
        errors.append("watch_polling_interval must be > 0")

    if errors:
        raise RuntimeError(f"Invalid settings: {'; '.join(errors)}")

    return warn_on_risky_config(s)


settings = Settings()
