"""
Print Stack Store
=================

One JSON document per stack: <stacks_dir>/<id>.json

GUARANTEES:
===========
1. A stack whose stored status is complete is never overwritten by save()
2. Writes are atomic: temp file in the same directory, then os.replace
3. Stack ids are validated before any path is built
4. Unreadable documents are skipped by list(), never fatal

merge_versions() is the only write path into a complete stack, and it
touches presentation data only (version caches, selections, analysis).
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
import json
import logging
import os
import tempfile

from ..contracts.base import ErrorCode, StorageWriteResult, is_valid_stack_id, sort_key_for_iso
from ..temporal.stack import PrintStack, StackStatus


logger = logging.getLogger(__name__)


class PrintStackStore:
    """File-backed store of print stack documents."""

    def __init__(self, stacks_dir: str):
        self._stacks_dir = stacks_dir
        os.makedirs(stacks_dir, exist_ok=True)

    @property
    def stacks_dir(self) -> str:
        return self._stacks_dir

    def _path_for(self, stack_id: str) -> str:
        return os.path.join(self._stacks_dir, f"{stack_id}.json")

    # =========================================================================
    # RAW DOCUMENT I/O
    # =========================================================================

    def _read_document(self, stack_id: str) -> Optional[Dict[str, Any]]:
        path = self._path_for(stack_id)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write_document(self, stack_id: str, document: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{stack_id}.", suffix=".tmp", dir=self._stacks_dir
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path_for(stack_id))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # =========================================================================
    # WRITES
    # =========================================================================

    def save(self, stack: PrintStack) -> StorageWriteResult:
        """Create or update; refused when the stored stack is complete."""
        if not is_valid_stack_id(stack.id):
            return StorageWriteResult.failure(
                ErrorCode.INVALID_STACK_ID, f"Invalid stack id: {stack.id!r}"
            )

        try:
            existing = self._read_document(stack.id)
        except (OSError, ValueError) as e:
            logger.warning("Existing stack %s unreadable, overwriting: %s", stack.id, e)
            existing = None

        if existing is not None and existing.get("stackStatus") == StackStatus.COMPLETE.value:
            logger.warning("Refused write to complete stack %s", stack.id)
            return StorageWriteResult.failure(
                ErrorCode.STACK_IMMUTABLE,
                "Stack is complete and cannot be modified",
                stack_id=stack.id,
            )

        try:
            self._write_document(stack.id, stack.to_dict())
        except OSError as e:
            logger.error("Failed to write stack %s: %s", stack.id, e)
            return StorageWriteResult.failure(ErrorCode.WRITE_FAILED, str(e), stack_id=stack.id)

        return StorageWriteResult.ok(stack.id)

    def merge_versions(self, stack: PrintStack) -> StorageWriteResult:
        """
        Merge presentation data of stack into the stored document.

        Version caches are unioned per activity (incoming wins on equal keys),
        selections follow the incoming stack, analysis entries are unioned.
        Timeline, status and metadata of the stored document are kept.
        """
        if not is_valid_stack_id(stack.id):
            return StorageWriteResult.failure(
                ErrorCode.INVALID_STACK_ID, f"Invalid stack id: {stack.id!r}"
            )

        stored = self.load(stack.id)
        if stored is None:
            return StorageWriteResult.failure(
                ErrorCode.STACK_NOT_FOUND, "Stack not found", stack_id=stack.id
            )

        if stored.activity_ids() != stack.activity_ids():
            return StorageWriteResult.failure(
                ErrorCode.TIMELINE_MISMATCH,
                "Activity sequence differs from the stored stack",
                stack_id=stack.id,
            )

        for target, incoming in zip(stored.activities, stack.activities):
            target.versions = target.versions.merged(incoming.versions)
        stored.analysis.update(stack.analysis)

        try:
            self._write_document(stored.id, stored.to_dict())
        except OSError as e:
            logger.error("Failed to merge versions into stack %s: %s", stack.id, e)
            return StorageWriteResult.failure(ErrorCode.WRITE_FAILED, str(e), stack_id=stack.id)

        return StorageWriteResult.ok(stack.id)

    # =========================================================================
    # READS
    # =========================================================================

    def load(self, stack_id: str) -> Optional[PrintStack]:
        if not is_valid_stack_id(stack_id):
            return None
        try:
            document = self._read_document(stack_id)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable stack %s: %s", stack_id, e)
            return None
        if document is None:
            return None
        try:
            return PrintStack.from_dict(document)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Malformed stack %s: %s", stack_id, e)
            return None

    def list(
        self,
        session_id: Optional[str] = None,
        status: Optional[StackStatus] = None,
    ) -> List[PrintStack]:
        """Stacks ordered by started_at, most recent first."""
        stacks: List[PrintStack] = []
        for name in sorted(os.listdir(self._stacks_dir)):
            if not name.endswith(".json") or name.startswith("."):
                continue
            stack = self.load(name[:-len(".json")])
            if stack is None:
                continue
            if session_id is not None and stack.session_id != session_id:
                continue
            if status is not None and stack.status != status:
                continue
            stacks.append(stack)

        stacks.sort(key=lambda s: sort_key_for_iso(s.started_at), reverse=True)
        return stacks

    def find_latest(self, session_id: str) -> Optional[PrintStack]:
        """
        Best stack to resume a session from.

        Most activities wins; ties prefer complete stacks, then the most
        recently started.
        """
        candidates = self.list(session_id=session_id)
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda s: (len(s.activities), s.is_complete, sort_key_for_iso(s.started_at)),
        )
