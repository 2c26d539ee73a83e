import json
from pathlib import Path
from typing import Dict, Optional

from hotdog.utils.config_dir import get_config_dir
from hotdog.utils.logger import logger
from hotdog.utils.urls import now_ms

HOSTS_FILE_NAME = "enabled_hosts.json"


class EnabledHosts:
    """Per-host on/off switch, persisted as {origin: activation timestamp} in the config dir."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or get_config_dir() / HOSTS_FILE_NAME
        self._hosts: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        try:
            if self.path.exists():
                with open(self.path, encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return {str(k): str(v) for k, v in data.items()}
                logger.warning(f"Ignoring malformed hosts file {self.path}")
            return {}
        except Exception as e:
            logger.error(f"Error loading enabled hosts: {e}")
            return {}

    def _save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._hosts, f, indent=2)
            return True
        except Exception as e:
            logger.error(f"Error saving enabled hosts: {e}")
            return False

    def get(self, host: str) -> Optional[str]:
        """Activation timestamp for the host, or None when it is disabled."""
        return self._hosts.get(host)

    def is_enabled(self, host: str) -> bool:
        return bool(self._hosts.get(host))

    def enable(self, host: str) -> bool:
        self._hosts[host] = str(now_ms())
        logger.debug(f"Enabled host {host}")
        return self._save()

    def disable(self, host: str) -> bool:
        if self._hosts.pop(host, None) is None:
            return True
        logger.debug(f"Disabled host {host}")
        return self._save()

    def hosts(self) -> Dict[str, str]:
        return dict(self._hosts)
