"""Local video selection ahead of upload"""
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Optional

from client_errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectedVideo:
    path: str
    name: str
    size: int
    content_type: str


def guess_content_type(path: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(path)
    return content_type


class VideoIngest:
    """Holds the files chosen for the current test.

    A new selection replaces the previous one. Only `video/` files are kept.
    """

    def __init__(self):
        self.selected: list[SelectedVideo] = []
        self.notice: Optional[str] = None

    def select_files(self, paths: list[str]) -> list[SelectedVideo]:
        accepted = []
        skipped = []
        for path in paths:
            content_type = guess_content_type(path)
            if not content_type or not content_type.startswith("video/"):
                skipped.append(os.path.basename(path))
                continue
            try:
                size = os.path.getsize(path)
            except OSError as e:
                raise ValidationError(f"Cannot read {os.path.basename(path)}: {e}") from e
            accepted.append(SelectedVideo(
                path=path,
                name=os.path.basename(path),
                size=size,
                content_type=content_type,
            ))

        if not accepted:
            # Earlier selection stays as it was
            raise ValidationError("Please select a valid video file")

        self.selected = accepted
        plural = "s" if len(accepted) > 1 else ""
        self.notice = f"{len(accepted)} video file{plural} selected"
        if skipped:
            self.notice += f"; skipped {len(skipped)} non-video file(s): {', '.join(skipped)}"
            logger.info(f"Skipped non-video files: {skipped}")
        return list(accepted)

    def remove(self, index: int) -> SelectedVideo:
        if not 0 <= index < len(self.selected):
            raise ValidationError(f"No selected video at position {index}")
        removed = self.selected.pop(index)
        self.notice = "Video file removed"
        return removed

    def clear(self) -> None:
        self.selected = []
        self.notice = None
