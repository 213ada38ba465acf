"""
Strategies mapping measurements and tag sets onto RRD files.

Each strategy answers three questions: which file stores a given
measurement and tag set, which files match a measurement prefix and a set
of tag conditions, and which measurements have files matching a set of
tag conditions.
"""

import glob
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import TagResolutionError
from .files import (
    RRD_EXTENSION,
    SEPARATOR_REPLACEMENT,
    TAG_SEPARATOR,
    TAG_VALUE_SEPARATOR,
    coerce_tag_value,
    decode_filename,
    encode_filename,
    sanitize,
)
from .search import TagCondition, TagSearch

logger = logging.getLogger(__name__)

UNSET_FOLDER = '_unset'
AMBIGUOUS_CHARACTERS = (TAG_SEPARATOR, TAG_VALUE_SEPARATOR, SEPARATOR_REPLACEMENT)


class TagStrategy(ABC):
    """Base class for RRD file layout strategies."""

    def __init__(self, base_dir: str):
        """Initialize the strategy.

        Args:
            base_dir: Directory holding the RRD files, ending with a slash

        Raises:
            TagResolutionError: If base_dir does not end with a slash
        """
        if not base_dir.endswith(('/', os.sep)):
            raise TagResolutionError('Base directory must end with a slash')
        self._base_dir = base_dir

    @property
    def base_dir(self) -> str:
        return self._base_dir

    @abstractmethod
    def get_file_path(self, measurement: str, tags: Optional[Dict[str, Any]] = None) -> str:
        """Return the file storing a measurement and tag set."""

    @abstractmethod
    def resolve_file_paths(
        self,
        measurement_prefix: str,
        conditions: Sequence[TagCondition],
        exact: bool = False,
    ) -> List[str]:
        """Return files whose measurement starts with the prefix and whose tags match.

        With exact set, the measurement must equal the prefix, so a query
        for 'cpu' never resolves to 'cpu2' or 'cpu_usage' files.
        """

    @abstractmethod
    def find_measurements_by_tags(self, conditions: Sequence[TagCondition]) -> List[str]:
        """Return measurements that have at least one file matching the conditions."""

    def _glob(self, pattern: str) -> List[str]:
        return sorted(glob.glob(glob.escape(self._base_dir) + pattern))


class FileNameStrategy(TagStrategy):
    """Encodes every tag into the file name.

    Example: cpu_usage_host-server1_region-us.east.rrd
    """

    def get_file_path(self, measurement: str, tags: Optional[Dict[str, Any]] = None) -> str:
        return self._base_dir + encode_filename(measurement, tags)

    def resolve_file_paths(
        self,
        measurement_prefix: str,
        conditions: Sequence[TagCondition],
        exact: bool = False,
    ) -> List[str]:
        candidates = self._glob(glob.escape(sanitize(measurement_prefix)) + '*' + RRD_EXTENSION)
        paths = []
        for path in candidates:
            measurement, tags = decode_filename(path, measurement_prefix if exact else None)
            if exact and measurement != sanitize(measurement_prefix):
                continue
            if TagSearch.search(tags, conditions):
                paths.append(path)
        logger.debug(
            "Resolved %d of %d files for prefix '%s'", len(paths), len(candidates), measurement_prefix
        )
        return paths

    def find_measurements_by_tags(self, conditions: Sequence[TagCondition]) -> List[str]:
        measurements = set()
        for path in self._glob('*' + RRD_EXTENSION):
            measurement, tags = decode_filename(path)
            if TagSearch.search(tags, conditions):
                measurements.add(measurement)
        return sorted(measurements)


class FolderStrategy(TagStrategy):
    """Stores selected tags as nested directories.

    The values of folder_tags, in order, become directories (a missing
    value becomes '_unset'); the remaining tags are encoded into the file
    name as in FileNameStrategy.

    Example with folder_tags ['region', 'host']:
        us-east/server1/cpu_usage_env-prod.rrd
    """

    def __init__(self, base_dir: str, folder_tags: Optional[List[str]] = None):
        super().__init__(base_dir)
        self.folder_tags = list(folder_tags or [])

    @staticmethod
    def _folder_name(value: Any) -> str:
        name = sanitize(coerce_tag_value(value))
        return name or UNSET_FOLDER

    def get_file_path(self, measurement: str, tags: Optional[Dict[str, Any]] = None) -> str:
        tags = tags or {}
        folders = [self._folder_name(tags.get(tag)) for tag in self.folder_tags]
        remaining = {k: v for k, v in tags.items() if k not in self.folder_tags}

        directory = self._base_dir + ''.join(f'{folder}/' for folder in folders)
        os.makedirs(directory, exist_ok=True)

        return directory + encode_filename(measurement, remaining)

    def _search_pattern(self, measurement_prefix: str, conditions: Sequence[TagCondition]) -> str:
        """Glob pattern pruned by equality conditions on folder tags.

        Pruning is only sound when the chain is a pure conjunction. Values
        are compared in sanitised form, where '_', '-' and '.' are the same
        character, so a folder name holding any of them stays a wildcard.
        """
        folders = ['*'] * len(self.folder_tags)
        if all(c.connective == 'AND' for c in conditions[1:]):
            for i, tag in enumerate(self.folder_tags):
                for condition in conditions:
                    if condition.tag == tag and condition.operator in ('=', '=='):
                        folder = self._folder_name(condition.value)
                        if not any(c in folder for c in AMBIGUOUS_CHARACTERS):
                            folders[i] = glob.escape(folder)
                        break
        prefix = glob.escape(sanitize(measurement_prefix))
        return ''.join(f'{folder}/' for folder in folders) + prefix + '*' + RRD_EXTENSION

    def _decode_path(self, path: str, measurement: Optional[str] = None) -> Tuple[str, Dict[str, str]]:
        relative = path[len(self._base_dir):]
        parts = relative.split('/')
        name, tags = decode_filename(parts[-1], measurement)
        for tag, folder in zip(self.folder_tags, parts[:-1]):
            if folder != UNSET_FOLDER:
                tags[tag] = folder
        return name, tags

    def _matching(
        self,
        measurement_prefix: str,
        conditions: Sequence[TagCondition],
        exact: bool = False,
    ) -> List[Tuple[str, str]]:
        pattern = self._search_pattern(measurement_prefix, conditions)
        matches = []
        for path in self._glob(pattern):
            measurement, tags = self._decode_path(path, measurement_prefix if exact else None)
            if exact and measurement != sanitize(measurement_prefix):
                continue
            if TagSearch.search(tags, conditions):
                matches.append((path, measurement))
        logger.debug("Pattern '%s' matched %d files", pattern, len(matches))
        return matches

    def resolve_file_paths(
        self,
        measurement_prefix: str,
        conditions: Sequence[TagCondition],
        exact: bool = False,
    ) -> List[str]:
        return [path for path, _ in self._matching(measurement_prefix, conditions, exact)]

    def find_measurements_by_tags(self, conditions: Sequence[TagCondition]) -> List[str]:
        return sorted({measurement for _, measurement in self._matching('', conditions)})


class NoTagsStrategy(TagStrategy):
    """Ignores tags: one file per measurement.

    Different tag sets of the same measurement share a file, and tag
    conditions are accepted without being checked.
    """

    def get_file_path(self, measurement: str, tags: Optional[Dict[str, Any]] = None) -> str:
        return self._base_dir + encode_filename(measurement)

    def resolve_file_paths(
        self,
        measurement_prefix: str,
        conditions: Sequence[TagCondition],
        exact: bool = False,
    ) -> List[str]:
        name = sanitize(measurement_prefix)
        if exact:
            return self._glob(glob.escape(name) + RRD_EXTENSION)
        return self._glob(glob.escape(name) + '*' + RRD_EXTENSION)

    def find_measurements_by_tags(self, conditions: Sequence[TagCondition]) -> List[str]:
        return sorted(
            os.path.basename(path)[:-len(RRD_EXTENSION)]
            for path in self._glob('*' + RRD_EXTENSION)
        )


TAG_STRATEGIES = {
    'filename': FileNameStrategy,
    'folder': FolderStrategy,
    'none': NoTagsStrategy,
}


def create_tag_strategy(
    name: str,
    base_dir: str,
    folder_tags: Optional[List[str]] = None,
) -> TagStrategy:
    """Instantiate a tag strategy by name.

    Args:
        name: 'filename', 'folder' or 'none'
        base_dir: Directory holding the RRD files
        folder_tags: Directory tags for the folder strategy

    Returns:
        Configured strategy

    Raises:
        TagResolutionError: If the name is unknown
    """
    if name not in TAG_STRATEGIES:
        raise TagResolutionError(f"Unknown tag strategy: {name}")
    if name == 'folder':
        return FolderStrategy(base_dir, folder_tags)
    return TAG_STRATEGIES[name](base_dir)
