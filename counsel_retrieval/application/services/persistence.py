from __future__ import annotations
import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, List, Tuple

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from counsel_retrieval.application.services.errors import PersistenceError
from counsel_retrieval.application.services.models import CollectionSnapshot, Document

_documents_adapter = TypeAdapter(List[Document])
_pair_adapter = TypeAdapter(Tuple[str, List[float]])


class CollectionFile:
    """
    One JSON file per collection at <persist_directory>/<collection_name>.json:

        {"documents":  [{"pageContent": "...", "metadata": {...}}, ...],
         "embeddings": [["content", [0.1, 0.2, ...]], ...]}

    Loading is best-effort: a missing, unreadable or malformed file yields an
    empty collection instead of an error. Saving writes a temp file in the same
    directory and renames it over the target, so readers never see a partial file.
    """

    def __init__(self, persist_directory: str | Path, collection_name: str):
        self.directory = Path(persist_directory)
        self.collection_name = collection_name
        self.path = self.directory / f"{collection_name}.json"

    def _warn(self, event: str, message: str, *args: Any) -> None:
        logger.bind(event=event, collection=self.collection_name, path=str(self.path)).warning(message, *args)

    # ------------------------------------------------------------------ load
    def _read(self) -> Tuple[List[Document], List[Tuple[str, List[float]]]]:
        if not self.path.exists():
            logger.debug("No collection file at {}; starting empty", self.path)
            return [], []

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as e:
            self._warn("collection_load_failed", "Could not read collection file {}: {}", self.path, e)
            return [], []

        if not isinstance(payload, dict):
            self._warn("collection_load_failed", "Collection file {} is not a JSON object", self.path)
            return [], []

        documents: List[Document] = []
        if "documents" in payload:
            try:
                documents = _documents_adapter.validate_python(payload["documents"])
            except ValidationError as e:
                self._warn("collection_documents_invalid", "Discarding invalid documents in {}: {}", self.path, e)

        embeddings: List[Tuple[str, List[float]]] = []
        raw_pairs = payload.get("embeddings")
        if isinstance(raw_pairs, list):
            skipped = 0
            for raw in raw_pairs:
                try:
                    embeddings.append(_pair_adapter.validate_python(raw))
                except ValidationError:
                    skipped += 1
            if skipped:
                self._warn("collection_embeddings_skipped", "Skipped {} malformed embedding pair(s) in {}", skipped, self.path)

        logger.info(
            "Loaded collection '{}' from {} ({} documents, {} cached embeddings)",
            self.collection_name, self.path, len(documents), len(embeddings),
        )
        return documents, embeddings

    async def load(self) -> Tuple[List[Document], List[Tuple[str, List[float]]]]:
        return await asyncio.to_thread(self._read)

    # ------------------------------------------------------------------ save
    def _write(self, snapshot: CollectionSnapshot) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        data = snapshot.model_dump_json(by_alias=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.collection_name}.", suffix=".json.tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def save(self, snapshot: CollectionSnapshot, max_attempts: int = 1) -> None:
        """Write the snapshot, retrying up to max_attempts times; raises PersistenceError on final failure."""
        attempts = max(1, max_attempts)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(self._write, snapshot)
                logger.debug(
                    "Saved collection '{}' to {} ({} documents)",
                    self.collection_name, self.path, len(snapshot.documents),
                )
                return
            except OSError as e:
                last_error = e
                logger.warning(
                    "Write of {} failed (attempt {}/{}): {}", self.path, attempt, attempts, e
                )
        raise PersistenceError(f"Could not write {self.path}: {last_error}") from last_error
