"""Orchestrates per-image analysis: hashing, caching, preprocessing and the model call."""

import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from pixname.config import ProcessingOptions
from pixname.exceptions import PixnameError, ServiceUnavailableError
from pixname.models.analysis import AnalysisRecord, AnalysisStatus
from pixname.processors.metadata_codec import MetadataCodec
from pixname.processors.preprocessor import ImagePreprocessor, PreparedImage
from pixname.processors.scanner import FolderScanner, compute_content_hash
from pixname.processors.vision_client import VisionClient


console = Console()

ProgressCallback = Callable[[int, int, str], None]
ResultCallback = Callable[[AnalysisRecord], object]


class CancellationToken(Protocol):
    """Anything with an `is_set()` method, typically a `threading.Event`."""

    def is_set(self) -> bool: ...


class AnalysisCache:
    """Successful analyses keyed by content fingerprint.

    A renamed or moved copy of an already analyzed file is recognized by its
    content and never sent to the model again.
    """

    def __init__(self) -> None:
        self._records: dict[str, AnalysisRecord] = {}
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> AnalysisRecord | None:
        with self._lock:
            return self._records.get(fingerprint)

    def put(self, record: AnalysisRecord) -> None:
        if not record.fingerprint:
            raise ValueError("Cannot cache a record without a fingerprint")
        with self._lock:
            self._records[record.fingerprint] = record

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._records


class ImageAnalyzer:
    """Runs images through the vision model one at a time."""

    def __init__(
        self,
        client: VisionClient,
        options: ProcessingOptions | None = None,
        preprocessor: ImagePreprocessor | None = None,
        cache: AnalysisCache | None = None,
        scanner: FolderScanner | None = None,
        metadata_reader: MetadataCodec | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            client: Vision client used for the model calls.
            options: Processing options. Defaults to `ProcessingOptions()`.
            preprocessor: Downscaler for oversized images. Built from the client's config when omitted.
            cache: Fingerprint cache, shareable between analyzers.
            scanner: Folder scanner used by `analyze_directory`.
            metadata_reader: Used to detect images that already carry tags.
        """
        self.client = client
        self.options = options or ProcessingOptions()
        self.preprocessor = preprocessor or ImagePreprocessor(
            max_dimension=client.config.max_image_dimension,
            max_bytes=client.config.max_image_bytes,
        )
        self.cache = cache if cache is not None else AnalysisCache()
        self.scanner = scanner or FolderScanner()
        self.metadata_reader = metadata_reader or MetadataCodec()

    def __enter__(self) -> "ImageAnalyzer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.preprocessor.cleanup()
        self.client.close()

    def clear_cache(self) -> None:
        self.cache.clear()

    def analyze_image(self, path: Path) -> AnalysisRecord:
        """Analyze a single image.

        Never raises for per-image problems: missing files, unreadable images,
        service errors and unusable replies all produce a FAILED record.

        Args:
            path: Image to analyze.

        Returns:
            A SUCCESS, FAILED or SKIPPED record.
        """
        path = Path(path).absolute()
        record = AnalysisRecord(source_path=path, original_name=path.name, extension=path.suffix.lower())

        if not path.is_file():
            return self._failed(record, "File not found")

        try:
            size_bytes = path.stat().st_size
            fingerprint = compute_content_hash(path)
        except OSError as e:
            return self._failed(record, f"Cannot read file: {e}")

        record = record.model_copy(update={"size_bytes": size_bytes, "fingerprint": fingerprint})

        cached = self.cache.get(fingerprint)
        if cached is not None:
            console.print(f"  [dim]{escape(path.name)}: using cached analysis[/dim]")
            return cached.rebind(path, size_bytes)

        if self.options.skip_existing_metadata and self.metadata_reader.has_existing_tags(path):
            console.print(f"  [dim]{escape(path.name)}: already tagged, skipping[/dim]")
            return record.model_copy(update={"status": AnalysisStatus.SKIPPED, "analyzed_at": datetime.now()})

        record = record.model_copy(update={"status": AnalysisStatus.ANALYZING})
        prepared: PreparedImage | None = None
        try:
            prepared = self.preprocessor.prepare(path)
            analysis = self.client.analyze(prepared.data, prepared.mime_type, filename_hint=path.name)
            result = AnalysisRecord.model_validate(
                {
                    **record.model_dump(),
                    **analysis.model_dump(),
                    "status": AnalysisStatus.SUCCESS,
                    "analyzed_at": datetime.now(),
                }
            )
        except (PixnameError, OSError, ValidationError) as e:
            console.print(f"  [red]{escape(path.name)}: {escape(str(e))}[/red]")
            return self._failed(record, str(e))
        except Exception as e:
            console.print(f"  [red]{escape(path.name)}: unexpected error: {escape(str(e))}[/red]")
            return self._failed(record, f"Unexpected error: {e}")
        finally:
            if prepared is not None and prepared.temp_path is not None:
                self.preprocessor.release(prepared.temp_path)

        self.cache.put(result)
        return result

    def analyze_batch(
        self,
        paths: Iterable[Path],
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        on_result: ResultCallback | None = None,
    ) -> list[AnalysisRecord]:
        """Analyze images sequentially.

        Args:
            paths: Images to analyze, in order.
            progress: Called with (current, total, filename) after each image.
            cancel: Checked between images; once set, the partial results are returned.
            on_result: Called with every SUCCESS record as soon as it is produced.

        Returns:
            One record per processed image, in input order.
        """
        paths = list(paths)
        total = len(paths)
        results: list[AnalysisRecord] = []

        try:
            for index, path in enumerate(paths, start=1):
                if cancel is not None and cancel.is_set():
                    console.print(f"[yellow]Analysis cancelled after {len(results)} of {total} images.[/yellow]")
                    break

                record = self.analyze_image(path)
                results.append(record)

                if progress is not None:
                    progress(index, total, record.original_name)
                if on_result is not None and record.status is AnalysisStatus.SUCCESS:
                    on_result(record)
        finally:
            self.preprocessor.cleanup()

        return results

    def analyze_directory(
        self,
        directory: Path,
        recursive: bool | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        on_result: ResultCallback | None = None,
    ) -> list[AnalysisRecord]:
        """Scan a directory and analyze every supported image in it.

        Raises:
            FileNotFoundError: If the directory does not exist.
            NotADirectoryError: If the path is not a directory.
            ServiceUnavailableError: If the vision service is unreachable or has no model loaded.
        """
        if recursive is None:
            recursive = self.options.recursive

        paths = self.scanner.scan_directory(directory, recursive=recursive)
        if not paths:
            console.print(f"[yellow]No supported images found in {escape(str(directory))}[/yellow]")
            return []

        if not self.client.is_ready():
            raise ServiceUnavailableError(
                f"Vision service at {self.client.config.base_url} is not reachable or has no model loaded"
            )

        console.print(f"[bold]Analyzing {len(paths)} images...[/bold]")
        return self.analyze_batch(paths, progress=progress, cancel=cancel, on_result=on_result)

    @staticmethod
    def _failed(record: AnalysisRecord, message: str) -> AnalysisRecord:
        return record.model_copy(
            update={
                "status": AnalysisStatus.FAILED,
                "error_message": message,
                "analyzed_at": datetime.now(),
            }
        )
