"""File processor interface and the default document pipeline.

A FileProcessor turns one uploaded file into a result dict. The worker pool
calls it once per job, either awaited directly (async implementations) or in
a thread executor (plain synchronous implementations).

The bundled DocumentPipeline chains three collaborators:

1. DocumentParser    -- extract text from the file
2. Translator        -- translate the text into the target language
3. ManualGenerator   -- optionally build a secondary manual from the text

To plug in a real engine, subclass the collaborator ABC and pass it to
DocumentPipeline; the queue never sees anything but FileProcessor.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from docbatch.jobs.errors import ProcessingError, ProcessingTimeoutError
from docbatch.jobs.models import FileRef, ProcessingOptions
from docbatch.processing.formats import detect_kind


@dataclass(frozen=True)
class ProcessContext:
    """Per-invocation data: which job this is and when it must finish."""
    task_id: str
    job_index: int
    deadline: float  # time.monotonic() value

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        if self.remaining() <= 0:
            raise ProcessingTimeoutError(
                f"Deadline passed while processing job {self.job_index}",
                task_id=self.task_id,
            )


class FileProcessor(ABC):
    @abstractmethod
    def process(
        self, file: FileRef, options: ProcessingOptions, context: ProcessContext
    ) -> Dict[str, Any]:
        """Process one file and return a JSON-serialisable result.

        Raise any exception to fail the job; ProcessingError subclasses keep
        their message verbatim in the job's error.
        """
        ...


class UnsupportedDocumentError(ProcessingError):
    pass


class DocumentParser(ABC):
    @abstractmethod
    def parse(self, file: FileRef) -> Dict[str, Any]:
        """Return at least {"text": str, "kind": str}."""
        ...


class Translator(ABC):
    @abstractmethod
    def translate(self, text: str, source_language: str, target_language: str) -> Dict[str, Any]:
        """Return at least {"translated_text": str}."""
        ...


class ManualGenerator(ABC):
    @abstractmethod
    def generate(self, document: Dict[str, Any], options: ProcessingOptions) -> Dict[str, Any]:
        ...


class PlainTextParser(DocumentParser):
    """Reads .txt/.md uploads as UTF-8. Other kinds need a real parser."""

    def parse(self, file: FileRef) -> Dict[str, Any]:
        kind = detect_kind(file.name)
        if kind != "text":
            raise UnsupportedDocumentError(
                f"No parser configured for {kind or 'unknown'} file '{file.name}'"
            )
        text = Path(file.path).read_text(encoding="utf-8", errors="replace")
        return {
            "kind": kind,
            "text": text,
            "metadata": {"characters": len(text), "lines": text.count("\n") + 1},
        }


class PassthroughTranslator(Translator):
    """Returns the source text unchanged; stands in when no engine is wired."""

    def translate(self, text: str, source_language: str, target_language: str) -> Dict[str, Any]:
        return {
            "translated_text": text,
            "source_language": source_language,
            "target_language": target_language,
            "engine": "passthrough",
        }


class DocumentPipeline(FileProcessor):
    """parse -> translate -> (optional) generate manual."""

    def __init__(
        self,
        parser: Optional[DocumentParser] = None,
        translator: Optional[Translator] = None,
        manual_generator: Optional[ManualGenerator] = None,
    ):
        self._parser = parser or PlainTextParser()
        self._translator = translator or PassthroughTranslator()
        self._manual_generator = manual_generator

    def process(
        self, file: FileRef, options: ProcessingOptions, context: ProcessContext
    ) -> Dict[str, Any]:
        document = self._parser.parse(file)
        context.check_deadline()

        translation = None
        if options.target_language != options.source_language:
            translation = self._translator.translate(
                document["text"], options.source_language, options.target_language
            )
            context.check_deadline()

        manual = None
        if options.generate_manual:
            if self._manual_generator is None:
                raise ProcessingError("Manual generation requested but no generator is configured")
            manual = self._manual_generator.generate(document, options)

        result: Dict[str, Any] = {
            "file_name": file.name,
            "output_format": options.output_format,
            "translation": translation,
            "manual": manual,
        }
        if options.include_original:
            result["original_document"] = document
        return result
