"""
Dialog Library Registry — Merges dialog libraries and resolves dialogs.

Libraries are registered once at startup. A name collision (dialog name or
trigger intent) is a configuration error and fails registration of the whole
library, so a half-merged library never reaches the dispatcher.

Resolution:
  1. resolve(name)            — exact dialog name, UnknownDialogError if absent
  2. find_by_intent(intent)   — dialog triggered by a recognizer intent
"""
from __future__ import annotations

import structlog
from typing import Optional

from core.errors import DuplicateDialogError, UnknownDialogError
from dialogs.models import Dialog, DialogLibrary

logger = structlog.get_logger()


class DialogRegistry:
    """Central registry for all dialogs, indexed by name and trigger intent."""

    def __init__(self):
        self._dialogs: dict[str, Dialog] = {}
        self._owners: dict[str, str] = {}            # dialog name → library name
        self._intent_index: dict[str, str] = {}      # intent → dialog name
        self._libraries: list[str] = []

    # ── Registration ──────────────────────────────────

    def register(self, library: DialogLibrary) -> None:
        """Register every dialog of a library, or none of them."""
        self._validate(library)

        for dialog in library.dialogs:
            self._dialogs[dialog.name] = dialog
            self._owners[dialog.name] = library.name
            for intent in dialog.intents:
                self._intent_index[intent] = dialog.name
        self._libraries.append(library.name)

        logger.info("dialog_library_registered",
                    library=library.name,
                    dialogs=library.dialog_names)

    def register_all(self, *libraries: DialogLibrary) -> None:
        for library in libraries:
            self.register(library)

    # ── Resolution ────────────────────────────────────

    def resolve(self, name: str) -> Dialog:
        dialog = self._dialogs.get(name)
        if dialog is None:
            raise UnknownDialogError(name)
        return dialog

    def find_by_intent(self, intent_name: str) -> Optional[Dialog]:
        dialog_name = self._intent_index.get(intent_name)
        return self._dialogs.get(dialog_name) if dialog_name else None

    def __contains__(self, name: str) -> bool:
        return name in self._dialogs

    def list_all(self) -> list[Dialog]:
        return list(self._dialogs.values())

    @property
    def libraries(self) -> list[str]:
        return list(self._libraries)

    # ── Validation ────────────────────────────────────

    def _validate(self, library: DialogLibrary) -> None:
        seen_names: set[str] = set()
        seen_intents: dict[str, str] = {}

        for dialog in library.dialogs:
            if dialog.name in self._dialogs:
                raise DuplicateDialogError(dialog.name, library.name, self._owners[dialog.name])
            if dialog.name in seen_names:
                raise DuplicateDialogError(dialog.name, library.name, library.name)
            seen_names.add(dialog.name)

            for intent in dialog.intents:
                if intent in self._intent_index:
                    owner = self._owners[self._intent_index[intent]]
                    raise DuplicateDialogError(f"intent:{intent}", library.name, owner)
                if intent in seen_intents:
                    raise DuplicateDialogError(f"intent:{intent}", library.name, library.name)
                seen_intents[intent] = dialog.name
