"""
File-based store for consumed page results.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import StoreError
from ..messaging.messages import PageResult


class PageStore:
    """
    Writes one JSON document per page under the data directory.

    Used as the downstream handler of the consumer: store_page() returns
    False on failure so the delivery is rejected.
    """

    STORAGE_VERSION = '1.0'

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
            'total_size_bytes': 0
        }

    def initialize(self):
        """Create the data directory and load saved statistics."""
        try:
            (self.data_directory / 'pages').mkdir(parents=True, exist_ok=True)

            stats_file = self.data_directory / 'stats.json'
            if stats_file.exists():
                with open(stats_file, 'r') as f:
                    self.stats.update(json.load(f))
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to initialize page store: {e}")

        self.logger.info(f"Page store initialized at {self.data_directory}")

    def _get_file_path(self, url: str) -> Path:
        url_hash = hashlib.sha256(url.encode('utf-8')).hexdigest()
        return self.data_directory / 'pages' / url_hash[:2] / f"{url_hash}.json"

    def store_page(self, page: PageResult) -> bool:
        """Store a page result. Re-storing a URL overwrites it."""
        try:
            file_path = self._get_file_path(page.url)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            data = page.to_dict()
            data['stored_at'] = datetime.now(timezone.utc).isoformat()
            data['storage_version'] = self.STORAGE_VERSION

            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)

            self.stats['total_stored'] += 1
            self.stats['total_size_bytes'] += file_path.stat().st_size
            self.logger.debug(f"Stored {page.url} to {file_path}")
            return True

        except OSError as e:
            self.stats['storage_errors'] += 1
            self.logger.error(f"Error storing page for {page.url}: {e}")
            return False

    def get_page(self, url: str) -> Optional[PageResult]:
        """Read a stored page back, or None if it was never stored."""
        file_path = self._get_file_path(url)
        if not file_path.exists():
            return None

        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        data.pop('stored_at', None)
        data.pop('storage_version', None)
        return PageResult.from_dict(data)

    def page_exists(self, url: str) -> bool:
        return self._get_file_path(url).exists()

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    def close(self):
        """Save statistics."""
        try:
            stats_file = self.data_directory / 'stats.json'
            with open(stats_file, 'w') as f:
                json.dump(self.stats, f, indent=2)
        except OSError as e:
            self.logger.error(f"Error saving statistics: {e}")
