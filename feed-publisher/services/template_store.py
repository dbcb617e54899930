"""
File based template store.
Reads the feed template file from disk on every call.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from domain.ports import TemplateStore, TemplateError
from domain.schema import FeedType, TemplateFile


logger = logging.getLogger(__name__)


class FileTemplateStore(TemplateStore):
    """
    Resolves and parses the JSON template file of a feed type.

    The interval feed uses ``interval_template``; every other feed type uses
    ``update_template``. A missing file is not an error.
    """

    def __init__(
        self,
        template_dir: Union[str, Path],
        interval_template: str = "IntervalTemplate.json",
        update_template: str = "DataUpdateTemplate.json"
    ):
        """
        Initialize template store.

        Args:
            template_dir: Directory holding the template files
            interval_template: File name used by the interval feed
            update_template: File name used by all other feeds
        """
        self.template_dir = Path(template_dir)
        self.interval_template = interval_template
        self.update_template = update_template

    def path_for(self, feed_type: Union[FeedType, str]) -> Path:
        if _is_interval(feed_type):
            return self.template_dir / self.interval_template
        return self.template_dir / self.update_template

    def load(self, feed_type: Union[FeedType, str]) -> Optional[TemplateFile]:
        """
        Load the template file for a feed type.

        Args:
            feed_type: Feed type whose template should be loaded

        Returns:
            Parsed template, or None when the file does not exist

        Raises:
            TemplateError: If the file cannot be read or parsed
        """
        path = self.path_for(feed_type)

        if not path.is_file():
            return None

        try:
            text = path.read_text(encoding='utf-8-sig')
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateError(path, f"failed to read template: {e}") from e

        try:
            template = TemplateFile.model_validate_json(text)
        except ValidationError as e:
            raise TemplateError(path, _summarize_validation_error(e)) from e

        logger.debug(
            f"Loaded template {path} with {len(template.topics)} topics",
            extra={
                "component": "template_store",
                "feed_type": str(getattr(feed_type, "value", feed_type)),
                "template": str(path)
            }
        )

        return template


def _is_interval(feed_type: Union[FeedType, str]) -> bool:
    # FeedType is a str enum, so plain strings compare equal to members
    return feed_type == FeedType.INTERVAL


def _summarize_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first.get('msg')}"
    return str(first.get("msg"))
