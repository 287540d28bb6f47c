"""
Identity Gallery Module

In-memory store of named face embeddings with JSON persistence. The gallery
is the single source of truth while the process runs; the file on disk is
only brought up to date by an explicit save.
"""

import json
import logging
import os
import re
import shutil
import tempfile
import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np

from .errors import DimensionMismatchError, GalleryFormatError
from .similarity import embedding_stats

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_EXCESS_FRACTION = re.compile(r'(\.\d{6})\d+')

BACKUP_TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with a trailing 'Z'."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp as written by this package or by other tools.

    Accepts a trailing 'Z' and more than six fractional digits. Naive values
    are taken to be UTC.

    Args:
        value: Timestamp text

    Returns:
        Timezone-aware datetime, or None if the value is missing or unparseable
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    text = _EXCESS_FRACTION.sub(r'\1', text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def backup_path_for(database_file: Path, backup_dir: Path, now: datetime) -> Path:
    """
    Name of a new backup of database_file, e.g. face_database_backup_20240102_030405.json.

    Same-second backups get a numeric suffix instead of overwriting.
    """
    suffix = database_file.suffix or '.json'
    base = f"{database_file.stem}_backup_{now.strftime(BACKUP_TIMESTAMP_FORMAT)}"
    path = backup_dir / f"{base}{suffix}"
    counter = 1
    while path.exists():
        path = backup_dir / f"{base}_{counter}{suffix}"
        counter += 1
    return path


@dataclass(frozen=True, eq=False)
class EmbeddingRecord:
    """One enrolled sample: a name and its embedding."""
    name: str
    vector: np.ndarray
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        vector = np.array(self.vector, dtype=np.float32).reshape(-1)
        vector.setflags(write=False)
        object.__setattr__(self, 'vector', vector)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, EmbeddingRecord):
            return NotImplemented
        return (self.id == other.id
                and self.name == other.name
                and self.created_at == other.created_at
                and np.array_equal(self.vector, other.vector))

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with metadata recomputed from the stored vector."""
        stats = embedding_stats(self.vector)
        metadata = dict(self.metadata)
        metadata['embeddingMagnitude'] = stats.magnitude
        metadata['embeddingMean'] = stats.mean

        return _drop_none({
            'name': self.name,
            'embeddings': [float(x) for x in self.vector.tolist()],
            'createdAt': format_timestamp(self.created_at),
            'id': self.id,
            'metadata': metadata,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmbeddingRecord':
        """
        Build a record from its persisted form.

        Args:
            data: Dictionary with 'name' and 'embeddings' keys

        Returns:
            EmbeddingRecord

        Raises:
            ValueError: If the name or vector is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object, got {type(data).__name__}")

        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValueError("record has no name")

        values = data.get('embeddings')
        if not isinstance(values, list) or not values:
            raise ValueError(f"record '{name}' has no embedding")
        try:
            vector = np.asarray(values, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ValueError(f"record '{name}' has a non-numeric embedding: {e}")
        if vector.ndim != 1:
            raise ValueError(f"record '{name}' embedding is not a flat list")

        metadata = data.get('metadata')
        kwargs: Dict[str, Any] = {
            'name': name,
            'vector': vector,
            'metadata': dict(metadata) if isinstance(metadata, dict) else {},
        }
        record_id = data.get('id')
        if isinstance(record_id, str) and record_id:
            kwargs['id'] = record_id
        created_at = parse_timestamp(data.get('createdAt'))
        if created_at is not None:
            kwargs['created_at'] = created_at

        return cls(**kwargs)


@dataclass
class GallerySettings:
    recognition_threshold: float = 0.55
    embedding_dimension: int = 512


@dataclass(frozen=True)
class PersonSummary:
    """Per-name view of the gallery used for listing."""
    name: str
    count: int


@dataclass(frozen=True)
class DatabaseFileInfo:
    path: Path
    exists: bool
    size_bytes: int = 0
    modified: Optional[datetime] = None


@dataclass
class GalleryDocument:
    """Parsed contents of a gallery file."""
    records: List[EmbeddingRecord]
    last_updated: Optional[datetime] = None
    version: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)


def read_document(path: PathLike) -> GalleryDocument:
    """
    Parse a gallery (or backup) file without touching any gallery.

    Records that cannot be parsed, or whose dimension differs from the one
    most records share, are left out and described in `skipped`. A tie goes
    to the dimension seen first.

    Args:
        path: File to read

    Returns:
        GalleryDocument

    Raises:
        GalleryFormatError: If the file is not a gallery document
        OSError: If the file cannot be read
    """
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise GalleryFormatError(f"{path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise GalleryFormatError(f"{path} does not contain a gallery object")

    faces = data.get('faces', [])
    if not isinstance(faces, list):
        raise GalleryFormatError(f"{path} has no 'faces' list")

    parsed: List[Tuple[int, EmbeddingRecord]] = []
    skipped: List[str] = []

    for index, item in enumerate(faces):
        try:
            parsed.append((index, EmbeddingRecord.from_dict(item)))
        except ValueError as e:
            skipped.append(f"entry {index}: {e}")

    records: List[EmbeddingRecord] = []
    if parsed:
        dimension = Counter(record.dimension for _, record in parsed).most_common(1)[0][0]
        for index, record in parsed:
            if record.dimension != dimension:
                skipped.append(
                    f"entry {index} ('{record.name}'): dimension {record.dimension} != {dimension}"
                )
                continue
            records.append(record)

    settings = data.get('settings')
    version = data.get('version')

    return GalleryDocument(
        records=records,
        last_updated=parse_timestamp(data.get('lastUpdated')),
        version=str(version) if version is not None else None,
        settings=dict(settings) if isinstance(settings, dict) else {},
        skipped=skipped,
    )


class IdentityGallery:
    """Ordered collection of embedding records with JSON persistence."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize an empty gallery.

        Args:
            config: Configuration dictionary with storage and recognition settings
        """
        self.storage_config = config.get('storage', {})
        recognition_config = config.get('recognition', {})

        self.database_file = Path(self.storage_config.get('database_file', 'face_database.json'))
        self.schema_version = str(self.storage_config.get('schema_version', '1.0'))
        self.settings = GallerySettings(
            recognition_threshold=float(recognition_config.get('similarity_threshold', 0.55)),
            embedding_dimension=int(self.storage_config.get('embedding_dimension', 512)),
        )
        backup_dir = self.storage_config.get('backup_dir')
        self.backup_dir = Path(backup_dir) if backup_dir else self.database_file.parent
        self.last_updated: Optional[datetime] = None

        # Set when the file on disk holds data that was not loaded; it is
        # copied to a backup before the first save over it.
        self.load_failed = False
        self.needs_preserve = False

        self._records: List[EmbeddingRecord] = []
        # Guards every mutation and snapshot.
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def records(self) -> Tuple[EmbeddingRecord, ...]:
        return self.snapshot()

    def snapshot(self) -> Tuple[EmbeddingRecord, ...]:
        """Return an immutable, consistent view of the records."""
        with self._lock:
            return tuple(self._records)

    @property
    def dimension(self) -> Optional[int]:
        """Dimension pinned by the records, or None while empty."""
        with self._lock:
            return self._records[0].dimension if self._records else None

    @property
    def embedding_dimension(self) -> int:
        dimension = self.dimension
        return dimension if dimension is not None else self.settings.embedding_dimension

    @property
    def person_count(self) -> int:
        return len(self.names())

    def names(self) -> Set[str]:
        with self._lock:
            return {record.name for record in self._records}

    def _check_dimensions(self, records: Iterable[EmbeddingRecord], expected: Optional[int]) -> None:
        for record in records:
            if record.dimension == 0:
                raise ValueError(f"Invalid embedding for '{record.name}'")
            if expected is None:
                expected = record.dimension
            elif record.dimension != expected:
                raise DimensionMismatchError(expected, record.dimension)

    def append(self, name: str, vector: Any) -> EmbeddingRecord:
        """
        Add one record with a new id and the current UTC timestamp.

        Args:
            name: Person name; surrounding whitespace is removed
            vector: Embedding vector

        Returns:
            The new record

        Raises:
            ValueError: If the name or vector is empty
            DimensionMismatchError: If the vector length differs from the gallery's
        """
        name = (name or '').strip()
        if not name:
            raise ValueError("Name must not be empty")

        record = EmbeddingRecord(name=name, vector=vector)
        with self._lock:
            self._check_dimensions([record], self.dimension)
            self._records.append(record)
            count = len(self._records)

        logger.debug(f"Added embedding for '{name}' (total: {count})")
        return record

    def extend(self, records: Iterable[EmbeddingRecord]) -> int:
        """
        Append existing records; either all are added or none.

        Returns:
            Number of records added
        """
        records = list(records)
        with self._lock:
            self._check_dimensions(records, self.dimension)
            self._records.extend(records)
        return len(records)

    def replace(self, records: Iterable[EmbeddingRecord]) -> int:
        """
        Swap the whole record set; either the new set is installed or nothing changes.

        Returns:
            Number of records now in the gallery
        """
        records = list(records)
        with self._lock:
            self._check_dimensions(records, None)
            self._records = records
        return len(records)

    def clear(self) -> int:
        """
        Remove every record. Taking a backup first is the caller's job.

        Returns:
            Number of records removed
        """
        with self._lock:
            removed = len(self._records)
            self._records = []
        logger.info(f"Cleared {removed} face embeddings from memory")
        return removed

    def query(self) -> List[PersonSummary]:
        """Group records by name, in first-seen order, with per-name counts."""
        counts: Dict[str, int] = {}
        for record in self.snapshot():
            counts[record.name] = counts.get(record.name, 0) + 1
        return [PersonSummary(name=name, count=count) for name, count in counts.items()]

    def file_info(self) -> DatabaseFileInfo:
        """Describe the primary database file on disk."""
        try:
            stat = self.database_file.stat()
        except OSError:
            return DatabaseFileInfo(path=self.database_file, exists=False)
        return DatabaseFileInfo(
            path=self.database_file,
            exists=True,
            size_bytes=int(stat.st_size),
            modified=datetime.fromtimestamp(stat.st_mtime),
        )

    def to_document(self, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
        """Build the JSON-ready representation of the gallery."""
        if timestamp is None:
            timestamp = utcnow()
        with self._lock:
            faces = [record.to_dict() for record in self._records]
            dimension = self.embedding_dimension

        return _drop_none({
            'faces': faces,
            'lastUpdated': format_timestamp(timestamp),
            'version': self.schema_version,
            'settings': _drop_none({
                'recognitionThreshold': self.settings.recognition_threshold,
                'embeddingDimension': dimension,
            }),
        })

    def save(self, destination: Optional[PathLike] = None) -> bool:
        """
        Write the gallery to disk.

        The document goes to a temporary file beside the target and is then
        moved over it, so a failed write leaves the previous file intact.
        If the last load left data on disk unread, that file is first copied
        to a timestamped backup; when the copy fails nothing is written.

        Args:
            destination: Custom file path (optional)

        Returns:
            True if saved successfully
        """
        path = Path(destination) if destination is not None else self.database_file
        tmp_path = None

        with self._lock:
            if self.needs_preserve and path == self.database_file and path.exists():
                if self._preserve_original() is None:
                    return False

            timestamp = utcnow()
            try:
                document = self.to_document(timestamp)
                directory = path.parent
                directory.mkdir(parents=True, exist_ok=True)

                fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=str(directory))
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(document, f, indent=2, ensure_ascii=False)
                    f.write('\n')
                os.replace(tmp_path, path)
                tmp_path = None
            except Exception as e:
                logger.error(f"Error saving face database to {path}: {e}")
                return False
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.remove(tmp_path)

            self.last_updated = timestamp
            count = len(self._records)

        logger.info(f"Saved {count} face embeddings to {path}")
        return True

    def _preserve_original(self) -> Optional[Path]:
        """Copy the database file aside before it is overwritten."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            target = backup_path_for(self.database_file, self.backup_dir, datetime.now())
            shutil.copyfile(self.database_file, target)
        except OSError as e:
            logger.error(f"Could not back up {self.database_file} before overwriting it: {e}")
            return None

        logger.warning(f"Database file held entries that were not loaded; original kept at {target}")
        self.needs_preserve = False
        return target

    def load(self, source: Optional[PathLike] = None) -> bool:
        """
        Load the gallery from disk.

        A missing file starts an empty gallery and writes it out straight
        away. An unreadable file is logged and left alone, and the gallery
        starts empty. Neither case raises. An unreadable file, or one with
        skipped entries, is backed up by the next save that replaces it.

        Args:
            source: Custom file path (optional)

        Returns:
            True if an existing document was read
        """
        path = Path(source) if source is not None else self.database_file

        if not path.exists():
            logger.info("No existing face database found, starting fresh")
            with self._lock:
                self._records = []
                self.last_updated = None
                self.load_failed = False
                self.needs_preserve = False
            self.save(path)
            return False

        try:
            document = read_document(path)
        except (GalleryFormatError, OSError) as e:
            logger.error(f"Error loading face database: {e}")
            logger.warning("Starting with empty database")
            with self._lock:
                self._records = []
                self.last_updated = None
                self.load_failed = True
                self.needs_preserve = path == self.database_file
            return False

        for reason in document.skipped:
            logger.warning(f"Skipped stored face embedding: {reason}")

        stored_threshold = document.settings.get('recognitionThreshold')
        if stored_threshold is not None and stored_threshold != self.settings.recognition_threshold:
            logger.debug(
                f"Stored threshold {stored_threshold} differs from configured "
                f"{self.settings.recognition_threshold}; using configured value"
            )

        with self._lock:
            self._records = list(document.records)
            self.last_updated = document.last_updated
            self.load_failed = False
            self.needs_preserve = bool(document.skipped) and path == self.database_file

        logger.info(f"Loaded {len(document.records)} face embeddings from {path}")
        if document.last_updated is not None:
            logger.info(f"Database last updated: {document.last_updated:%Y-%m-%d %H:%M:%S} UTC")
        people = self.query()
        if people:
            logger.info("Loaded people: " + ", ".join(f"{p.name} ({p.count})" for p in people))
        return True
