"""Source configuration loader for docscope.

A source is one crawl request: a documentation root URL indexed under a
library name and version. Sources are YAML files in the sources directory.
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from urllib.parse import urlsplit
import logging

logger = logging.getLogger(__name__)

VALID_SCOPES = ("subpages", "hostname", "domain")


@dataclass
class SourceConfig:
    """Configuration for one library version to crawl."""
    name: str
    library: str
    url: str
    version: str = ""
    scope: str = "subpages"
    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    # None falls back to the crawler settings
    max_pages: Optional[int] = None
    max_depth: Optional[int] = None
    max_concurrency: Optional[int] = None
    clean: bool = True
    enabled: bool = True
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("Source name cannot be empty")

        if not self.library or not self.library.strip():
            raise ValueError("Source must name a library")

        parsed = urlsplit(self.url or "")
        if parsed.scheme not in ("http", "https", "file") or not (parsed.netloc or parsed.scheme == "file"):
            raise ValueError(f"Invalid source URL: {self.url!r}")

        if self.scope not in VALID_SCOPES:
            raise ValueError(f"Invalid scope: {self.scope}")

        if self.max_pages is not None and self.max_pages < 1:
            raise ValueError("max_pages must be at least 1")

        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must not be negative")

        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.version = str(self.version or "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceConfig':
        """Create SourceConfig from dictionary."""
        return cls(
            name=data['name'],
            library=data.get('library', data['name']),
            url=data['url'],
            version=data.get('version', ''),
            scope=data.get('scope', 'subpages'),
            include=data.get('include'),
            exclude=data.get('exclude'),
            max_pages=data.get('max_pages'),
            max_depth=data.get('max_depth'),
            max_concurrency=data.get('max_concurrency'),
            clean=data.get('clean', True),
            enabled=data.get('enabled', True),
            headers=data.get('headers') or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            'name': self.name,
            'library': self.library,
            'url': self.url,
            'version': self.version,
            'scope': self.scope,
            'clean': self.clean,
            'enabled': self.enabled
        }

        # None means "use the defaults", an empty list disables exclusion
        if self.include is not None:
            result['include'] = self.include
        if self.exclude is not None:
            result['exclude'] = self.exclude
        for key in ('max_pages', 'max_depth', 'max_concurrency'):
            if getattr(self, key) is not None:
                result[key] = getattr(self, key)
        if self.headers:
            result['headers'] = self.headers

        return result


class SourceLoader:
    """Loads source configurations from YAML files."""

    def __init__(self, sources_dir: Optional[Path] = None):
        """Initialize source loader.

        Args:
            sources_dir: Directory containing source YAML files.
                        Defaults to the directory of this module.
        """
        if sources_dir is None:
            sources_dir = Path(__file__).parent

        self.sources_dir = Path(sources_dir)
        self._cache: Dict[str, SourceConfig] = {}
        self._last_modified: Dict[str, float] = {}

    def load_source_config(self, source_name: str) -> Optional[SourceConfig]:
        """Load configuration for a specific source.

        Args:
            source_name: Name of the source (without .yaml extension)

        Returns:
            SourceConfig if found and valid, None otherwise
        """
        yaml_file = self.sources_dir / f"{source_name}.yaml"

        if not yaml_file.exists():
            logger.warning(f"Source configuration not found: {yaml_file}")
            return None

        current_mtime = yaml_file.stat().st_mtime
        if (source_name in self._cache and
                self._last_modified.get(source_name, 0) >= current_mtime):
            return self._cache[source_name]

        try:
            with open(yaml_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to parse YAML file {yaml_file}: {e}")
            return None

        if not isinstance(data, dict) or not data:
            logger.error(f"Empty or invalid YAML file: {yaml_file}")
            return None

        # Ensure name matches filename
        if data.get('name', source_name) != source_name:
            logger.warning(f"Source name mismatch in {yaml_file}: {data['name']} != {source_name}")
        data['name'] = source_name

        try:
            config = SourceConfig.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Invalid source configuration in {yaml_file}: {e}")
            return None

        self._cache[source_name] = config
        self._last_modified[source_name] = current_mtime

        logger.info(f"Loaded source configuration: {source_name}")
        return config

    def load_all_sources(self) -> Dict[str, SourceConfig]:
        """Load all source configurations from the sources directory.

        Returns:
            Dictionary mapping source names to SourceConfig objects
        """
        sources = {}

        if not self.sources_dir.exists():
            logger.warning(f"Sources directory not found: {self.sources_dir}")
            return sources

        for yaml_file in sorted(self.sources_dir.glob("*.yaml")):
            config = self.load_source_config(yaml_file.stem)
            if config:
                sources[yaml_file.stem] = config

        logger.info(f"Loaded {len(sources)} source configurations")
        return sources

    def get_enabled_sources(self) -> Dict[str, SourceConfig]:
        """Get all enabled source configurations."""
        return {name: config for name, config in self.load_all_sources().items() if config.enabled}
