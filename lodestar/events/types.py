"""
Typed page events for lodestar.

Dialogs and file choosers are actionable: they carry the page connection so
the subscriber can answer them.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

if TYPE_CHECKING:
    from lodestar.cdp.connection import CDPConnection


class PageEvent(str, Enum):
    """Events surfaced by a Page."""

    CONSOLE = "console"
    DIALOG = "dialog"
    FILE_CHOOSER = "filechooser"
    PAGE_ERROR = "pageerror"
    FRAME_NAVIGATED = "framenavigated"
    CLOSE = "close"


class DialogType(str, Enum):
    """Kinds of JavaScript dialogs."""

    ALERT = "alert"
    CONFIRM = "confirm"
    PROMPT = "prompt"
    BEFOREUNLOAD = "beforeunload"


class Dialog:
    """A JavaScript dialog opened by the page.

    The page stays blocked until the dialog is accepted or dismissed.
    """

    def __init__(self, connection: "CDPConnection", params: dict[str, Any]) -> None:
        self._connection = connection
        self.message: str = params.get("message", "")
        self.type = DialogType(params.get("type", "alert"))
        self.default_value: str = params.get("defaultPrompt") or ""
        self.url: Optional[str] = params.get("url")
        self._handled = False

    @property
    def handled(self) -> bool:
        return self._handled

    async def accept(self, prompt_text: Optional[str] = None) -> None:
        """Accept the dialog.

        Args:
            prompt_text: Text to enter into a prompt. Ignored for other types.
        """
        params: dict[str, Any] = {"accept": True}
        if prompt_text is not None:
            params["promptText"] = prompt_text
        await self._connection.send("Page.handleJavaScriptDialog", params)
        self._handled = True

    async def dismiss(self) -> None:
        """Dismiss the dialog."""
        await self._connection.send("Page.handleJavaScriptDialog", {"accept": False})
        self._handled = True

    def __repr__(self) -> str:
        return f"Dialog(type={self.type.value!r}, message={self.message!r})"


class FileChooser:
    """A file chooser the page opened, intercepted instead of shown."""

    def __init__(self, connection: "CDPConnection", params: dict[str, Any]) -> None:
        self._connection = connection
        self.multiple: bool = params.get("mode") == "selectMultiple"
        self.frame_id: Optional[str] = params.get("frameId")
        self.backend_node_id: Optional[int] = params.get("backendNodeId")

    async def set_files(self, files: Sequence[Union[str, os.PathLike[str]]]) -> None:
        """Set the files of the associated input.

        Relative paths are resolved against the current working directory.
        An empty sequence clears the selection.
        """
        if self.backend_node_id is None:
            raise ValueError("File chooser is not associated with an input element")
        if len(files) > 1 and not self.multiple:
            raise ValueError("File chooser accepts a single file")
        await self._connection.send(
            "DOM.setFileInputFiles",
            {
                "files": [str(Path(f).resolve()) for f in files],
                "backendNodeId": self.backend_node_id,
            },
        )

    def __repr__(self) -> str:
        return f"FileChooser(multiple={self.multiple})"
