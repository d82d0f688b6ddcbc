"""Configuration models describing download sorter settings."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SETTLE_TIME_SECONDS = 180
DEFAULT_BIG_FILE_THRESHOLD = 1024 * 1024 * 1024
DEFAULT_IGNORE_EXTENSIONS = [".crdownload", ".part", ".tmp", ".download", ".partial"]
DEFAULT_DATABASE_PATH = "~/.download-sorter/sorter.db"


class Folders:
    """Well-known folder names created beneath the sorter root."""

    INBOX = "00_INBOX"
    PINNED = "00_PINNED"
    DOCUMENTS = "10_Documents"
    EXECUTABLES = "20_Executables"
    ARCHIVES = "30_Archives"
    MEDIA = "40_Media"
    CODE = "50_Code"
    ISOS = "60_ISOs"
    BIG_FILES = "80_Big_Files"
    UNSORTED = "_UNSORTED"

    ALL = (
        INBOX,
        PINNED,
        DOCUMENTS,
        EXECUTABLES,
        ARCHIVES,
        MEDIA,
        CODE,
        ISOS,
        BIG_FILES,
        UNSORTED,
    )


def normalize_extension(extension: str) -> str:
    """Return ``extension`` lowercased with surrounding whitespace and leading dots removed.

    Args:
        extension: Raw extension such as ``.PDF`` or ``pdf``.

    Returns:
        str: Normalized extension; an empty string for extensionless files.
    """

    return extension.strip().lstrip(".").lower()


class SorterBaseModel(BaseModel):
    """Shared configuration for download sorter Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class CategoryRule(SorterBaseModel):
    """Route a set of extensions to a category folder.

    Attributes:
        category: Destination folder name beneath the sorter root.
        extensions: Extensions handled by the rule (case-insensitive).
        subfolder: Optional folder nested inside the category folder.
    """

    category: str
    extensions: List[str] = Field(default_factory=list)
    subfolder: Optional[str] = None

    def matches(self, extension: str) -> bool:
        """Return whether ``extension`` belongs to this rule."""
        normalized = normalize_extension(extension)
        if not normalized:
            return False
        return any(normalize_extension(candidate) == normalized for candidate in self.extensions)


def default_categories() -> list[CategoryRule]:
    """Return the built-in category rule table."""
    return [
        CategoryRule(
            category=Folders.DOCUMENTS,
            extensions=[
                ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
                ".txt", ".rtf", ".odt", ".ods", ".odp", ".csv", ".epub", ".mobi",
            ],
        ),
        CategoryRule(
            category=Folders.EXECUTABLES,
            extensions=[".exe", ".msi", ".msix", ".appx", ".bat", ".cmd"],
        ),
        CategoryRule(
            category=Folders.ARCHIVES,
            extensions=[".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz", ".tgz"],
        ),
        CategoryRule(
            category=Folders.MEDIA,
            extensions=[
                ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg", ".ico",
                ".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm",
                ".mp3", ".flac", ".wav", ".m4a", ".aac", ".ogg", ".wma",
            ],
        ),
        CategoryRule(
            category=Folders.CODE,
            extensions=[
                ".json", ".xml", ".yml", ".yaml", ".toml", ".ini", ".conf", ".config",
                ".py", ".js", ".ts", ".cs", ".java", ".cpp", ".c", ".h", ".go", ".rs",
                ".ps1", ".sh", ".bash", ".sql", ".html", ".css", ".scss", ".less",
            ],
        ),
        CategoryRule(
            category=Folders.ISOS,
            extensions=[".iso", ".img", ".dmg", ".vhd", ".vhdx", ".vmdk"],
        ),
    ]


class SortingOptions(SorterBaseModel):
    """Options governing settle detection and file moves.

    Attributes:
        settle_time_seconds: Seconds a file must stay unchanged before sorting.
        sweep_interval_seconds: Interval between settle sweeps.
        ignore_extensions: Extensions of partial downloads that are never sorted.
        big_file_threshold: Size in bytes at which files route to the big-files folder.
        enable_big_file_routing: Whether the size threshold is applied at all.
        lock_retry_attempts: Move attempts made while a file is locked.
        lock_retry_delay_seconds: Delay between locked move attempts.
        compute_hashes: Whether to store a SHA-256 digest on audit records.
    """

    settle_time_seconds: int = DEFAULT_SETTLE_TIME_SECONDS
    sweep_interval_seconds: float = 1.0
    ignore_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_EXTENSIONS))
    big_file_threshold: int = DEFAULT_BIG_FILE_THRESHOLD
    enable_big_file_routing: bool = True
    lock_retry_attempts: int = 3
    lock_retry_delay_seconds: float = 0.5
    compute_hashes: bool = False

    @field_validator("settle_time_seconds")
    @classmethod
    def _clamp_settle_time(cls, value: int) -> int:
        return DEFAULT_SETTLE_TIME_SECONDS if value < 0 else value

    @field_validator("big_file_threshold")
    @classmethod
    def _clamp_threshold(cls, value: int) -> int:
        return DEFAULT_BIG_FILE_THRESHOLD if value < 0 else value

    @field_validator("sweep_interval_seconds")
    @classmethod
    def _clamp_sweep_interval(cls, value: float) -> float:
        return 1.0 if value <= 0 else value

    @field_validator("lock_retry_attempts")
    @classmethod
    def _clamp_retry_attempts(cls, value: int) -> int:
        return max(1, value)

    @field_validator("lock_retry_delay_seconds")
    @classmethod
    def _clamp_retry_delay(cls, value: float) -> float:
        return max(0.0, value)


class WatchOptions(SorterBaseModel):
    """Settings for the long-running watcher.

    Attributes:
        error_backoff_seconds: Initial delay before resubscribing after a failure.
        max_error_backoff_seconds: Upper bound for the resubscribe delay.
        health_check_seconds: Interval at which the observer is checked for liveness.
    """

    error_backoff_seconds: float = 1.0
    max_error_backoff_seconds: float = 60.0
    health_check_seconds: float = 1.0


class LoggingSettings(SorterBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
        directory: Directory receiving log files.
    """

    level: str = "INFO"
    max_size_mb: int = 10
    backup_count: int = 5
    directory: str = "~/.download-sorter/logs"


class CLIOptions(SorterBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        history_limit: Default number of history rows to display.
        loop_interval_seconds: Seconds between cycles in `sort --loop`.
    """

    quiet_default: bool = False
    history_limit: int = 20
    loop_interval_seconds: int = 30


class SorterConfig(SorterBaseModel):
    """Top-level configuration struct for the download sorter.

    Attributes:
        root_path: Root folder containing the category folders.
        watch_folders: Additional folders (such as browser download folders) to sort from.
        database_path: Location of the SQLite audit database.
        sorting: Settle and move options.
        watch: Watcher supervision options.
        categories: Ordered category routing rules; first match wins.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    root_path: str = ""
    watch_folders: List[str] = Field(default_factory=list)
    database_path: str = DEFAULT_DATABASE_PATH
    sorting: SortingOptions = Field(default_factory=SortingOptions)
    watch: WatchOptions = Field(default_factory=WatchOptions)
    categories: List[CategoryRule] = Field(default_factory=default_categories)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)

    @field_validator("watch_folders")
    @classmethod
    def _drop_blank_folders(cls, value: List[str]) -> List[str]:
        return [folder for folder in value if folder and folder.strip()]

    @property
    def root(self) -> Path:
        """Return the expanded sorter root."""
        return Path(self.root_path).expanduser()

    @property
    def inbox_path(self) -> Path:
        """Return the default inbox folder beneath the root."""
        return self.root / Folders.INBOX

    @property
    def all_watch_folders(self) -> list[Path]:
        """Return the inbox followed by every existing extra watch folder."""
        folders: list[Path] = []
        if self.root_path:
            folders.append(self.inbox_path)
        for folder in self.watch_folders:
            path = Path(folder).expanduser()
            if path.is_dir():
                folders.append(path)
        return folders

    @property
    def resolved_database_path(self) -> Path:
        """Return the expanded audit database path."""
        return Path(self.database_path).expanduser()

    def should_ignore(self, path: Path | str) -> bool:
        """Return whether ``path`` carries an ignored (partial download) extension."""
        suffix = normalize_extension(Path(path).suffix)
        if not suffix:
            return False
        return any(normalize_extension(ext) == suffix for ext in self.sorting.ignore_extensions)

    def extension_conflicts(self) -> dict[str, list[str]]:
        """Return extensions claimed by more than one rule, mapped to the claiming categories."""
        owners: dict[str, list[str]] = {}
        for rule in self.categories:
            for extension in dict.fromkeys(normalize_extension(ext) for ext in rule.extensions):
                if extension:
                    owners.setdefault(extension, []).append(rule.category)
        return {ext: categories for ext, categories in owners.items() if len(categories) > 1}

    def create_folder_structure(self) -> None:
        """Create every well-known folder beneath the root."""
        for folder in Folders.ALL:
            (self.root / folder).mkdir(parents=True, exist_ok=True)
        for rule in self.categories:
            (self.root / rule.category).mkdir(parents=True, exist_ok=True)


__all__ = [
    "DEFAULT_BIG_FILE_THRESHOLD",
    "DEFAULT_IGNORE_EXTENSIONS",
    "DEFAULT_SETTLE_TIME_SECONDS",
    "CategoryRule",
    "CLIOptions",
    "Folders",
    "LoggingSettings",
    "SorterBaseModel",
    "SorterConfig",
    "SortingOptions",
    "WatchOptions",
    "default_categories",
    "normalize_extension",
]
