import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("COUNTER_DATA_DIR", Path.home() / ".visitor_counter"))


class LocalStore:
    """Key/value store persisted to a JSON file, playing the part of browser localStorage."""

    def __init__(self, data_file: str | None = None):
        self.data_file = Path(data_file) if data_file else DATA_DIR / "local_storage.json"
        self.ensure_data_file()

    def ensure_data_file(self):
        """Ensure the data file and directory exist"""
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.data_file.exists():
            self.data_file.write_text("{}", encoding="utf-8")

    def load(self):
        try:
            data = json.loads(self.data_file.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError) as e:
            logger.warning("Error loading %s: %s", self.data_file, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, items):
        try:
            self.data_file.write_text(json.dumps(items, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Error saving %s: %s", self.data_file, e)

    def get_item(self, key, default=None):
        return self.load().get(key, default)

    def has_item(self, key):
        return key in self.load()

    def set_item(self, key, value):
        items = self.load()
        items[key] = value
        self.save(items)

    def remove_item(self, key):
        items = self.load()
        if key in items:
            del items[key]
            self.save(items)
