"""Atomic multi-file config transactions.

Every selected file is mutated into a scratch copy and validated first.
Originals are replaced only when every staged copy is valid; a failure
during replacement restores the files already replaced from their backups.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import tomlkit

from moonfrp.store.backup import BackupManager, atomic_write
from moonfrp.store.config_store import ConfigStore, get_field, load_document, set_field
from moonfrp.store.validator import ConfigValidator

from .models import (
    EngineError,
    FieldChange,
    FieldMutation,
    ReplaceBody,
    StagedChange,
    TransactionError,
    TransactionPlan,
    TransactionResult,
    ValidationState,
)

logger = logging.getLogger(__name__)

Mutation = FieldMutation | ReplaceBody


def apply_mutations(
    path: Path, body: str, mutations: Sequence[Mutation]
) -> Tuple[str, List[FieldChange]]:
    """Apply mutations in order; raises ValueError on unparseable input.

    Field edits go through tomlkit so comments and table layout survive.
    """
    previews: List[FieldChange] = []
    for mutation in mutations:
        if isinstance(mutation, ReplaceBody):
            body = mutation.body
            previews.append(FieldChange(path, "*", None, None))
            continue
        old_value = get_field(load_document(body), mutation.field_path)
        document = tomlkit.parse(body)
        try:
            set_field(document, mutation.field_path, mutation.value)
            body = tomlkit.dumps(document)
        except TypeError as exc:
            raise ValueError(f"Cannot serialize {mutation.field_path}: {exc}") from exc
        previews.append(FieldChange(path, mutation.field_path, old_value, mutation.value))
    return body, previews


def _same_document(original: str, body: str) -> bool:
    if original == body:
        return True
    try:
        return load_document(original) == load_document(body)
    except ValueError:
        return False


class Transaction:
    """One prepare/commit cycle over a fixed set of files.

    Use as a context manager; the scratch directory is removed on exit.
    """

    def __init__(
        self,
        store: ConfigStore,
        validator: ConfigValidator,
        backups: BackupManager,
        index=None,
        scratch_root: Optional[Path] = None,
    ):
        self.store = store
        self.validator = validator
        self.backups = backups
        self.index = index
        self.scratch_root = scratch_root
        self.changes: List[StagedChange] = []
        self.warnings: List[Tuple[Path, str]] = []
        self._scratch_dir: Optional[Path] = None

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    @property
    def errors(self) -> List[Tuple[Path, str]]:
        return [
            (change.original_path, change.reason or "invalid")
            for change in self.changes
            if change.state is ValidationState.INVALID
        ]

    def prepare(self, targets: Mapping[Path, Sequence[Mutation]]) -> None:
        """Stage and validate every target. Originals are not touched."""
        try:
            if self.scratch_root is not None:
                Path(self.scratch_root).mkdir(parents=True, exist_ok=True)
            self._scratch_dir = Path(
                tempfile.mkdtemp(prefix="moonfrp-txn-", dir=self.scratch_root)
            )
        except OSError as exc:
            raise TransactionError(f"Cannot create scratch directory: {exc}") from exc

        for position, (path, mutations) in enumerate(targets.items()):
            change = StagedChange(
                original_path=Path(path),
                scratch_path=self._scratch_dir / f"{position:04d}-{Path(path).name}",
                config_type=self.store.config_type(path),
            )
            self.changes.append(change)
            try:
                original = self.store.read(path)
            except OSError as exc:
                raise TransactionError(f"Cannot read {path}: {exc}") from exc

            try:
                body, change.previews = apply_mutations(change.original_path, original, mutations)
            except ValueError as exc:
                change.state = ValidationState.INVALID
                change.reason = str(exc)
                continue
            change.unchanged = _same_document(original, body)

            try:
                self.store.write(change.scratch_path, body)
            except OSError as exc:
                raise TransactionError(f"Cannot stage {path}: {exc}") from exc

            outcome = self.validator.validate(body, change.config_type)
            if outcome.ok:
                change.state = ValidationState.VALID
            else:
                change.state = ValidationState.INVALID
                change.reason = outcome.reason
            for warning in outcome.warnings:
                self.warnings.append((change.original_path, warning))

    def commit(self) -> List[Path]:
        """Replace originals with staged copies; returns the files changed."""
        if any(change.state is not ValidationState.VALID for change in self.changes):
            raise TransactionError("Cannot commit: not every staged change is valid")

        replaced: List[StagedChange] = []
        try:
            for change in self.changes:
                if change.unchanged:
                    continue
                change.backup_path = self.backups.backup(change.original_path)
                replaced.append(change)
                atomic_write(change.original_path, change.scratch_path.read_bytes())
        except BaseException as exc:
            # Any exit, interrupts included, puts the originals back
            self._restore(replaced)
            if isinstance(exc, OSError):
                raise TransactionError(f"Commit failed, changes rolled back: {exc}") from exc
            raise

        changed = [change.original_path for change in replaced]
        for path in changed:
            logger.info("Committed %s", path)
            if self.index is None:
                continue
            try:
                self.index.reindex(path)
            except (EngineError, OSError) as exc:
                logger.warning("Index update failed for %s: %s", path, exc)
                self.warnings.append((path, f"index update failed: {exc}"))
        return changed

    def rollback(self) -> None:
        """Drop staged state. Originals were never touched before commit."""
        for change in self.changes:
            change.state = ValidationState.PENDING
        self.discard()

    def discard(self) -> None:
        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            self._scratch_dir = None

    def _restore(self, replaced: Iterable[StagedChange]) -> None:
        for change in replaced:
            if change.backup_path is None:
                continue
            try:
                atomic_write(change.original_path, change.backup_path.read_bytes())
                logger.warning("Restored %s after failed commit", change.original_path)
            except OSError as exc:
                logger.error(
                    "Could not restore %s from %s: %s",
                    change.original_path,
                    change.backup_path,
                    exc,
                )


class TransactionManager:
    """Applies TransactionPlans all-or-nothing."""

    def __init__(
        self,
        store: ConfigStore,
        validator: ConfigValidator,
        backups: BackupManager,
        index=None,
        scratch_root: Optional[Path] = None,
    ):
        self.store = store
        self.validator = validator
        self.backups = backups
        self.index = index
        self.scratch_root = scratch_root

    def apply(self, plan: TransactionPlan) -> TransactionResult:
        return self.apply_all([plan], dry_run=plan.dry_run)

    def apply_all(
        self, plans: Sequence[TransactionPlan], dry_run: bool = False
    ) -> TransactionResult:
        """Apply several plans as one transaction.

        Mutations for the same file are applied in plan order.
        """
        targets: Dict[Path, List[Mutation]] = {}
        for plan in plans:
            for path in self.store.resolve_by_filter(plan.filter):
                targets.setdefault(path, []).append(plan.mutation)

        if not targets:
            logger.info("No configs matched %s", ", ".join(str(p.filter) for p in plans))
            return TransactionResult(committed=not dry_run, dry_run=dry_run)

        with Transaction(
            self.store, self.validator, self.backups, self.index, self.scratch_root
        ) as txn:
            txn.prepare(targets)
            previews = [preview for change in txn.changes for preview in change.previews]
            errors = txn.errors
            if errors:
                txn.rollback()
                logger.warning(
                    "Transaction aborted: %d of %d files failed validation",
                    len(errors),
                    len(targets),
                )
                return TransactionResult(
                    committed=False,
                    validation_errors=errors,
                    dry_run=dry_run,
                    previews=previews,
                    warnings=txn.warnings,
                    targets=list(targets),
                )
            if dry_run:
                return TransactionResult(
                    committed=False,
                    dry_run=True,
                    previews=previews,
                    warnings=txn.warnings,
                    targets=list(targets),
                )
            changed = txn.commit()
            logger.info("Transaction committed: %d files changed", len(changed))
            return TransactionResult(
                committed=True,
                changed_files=changed,
                previews=previews,
                warnings=txn.warnings,
                targets=list(targets),
            )
