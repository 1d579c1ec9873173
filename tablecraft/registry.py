# tablecraft/registry.py
import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Union

from tablecraft.models.descriptor import TableDescriptor

logger = logging.getLogger(__name__)


class DescriptorRegistry:
    """Table descriptors by name, looked up by the HTTP layer"""

    def __init__(self):
        self._descriptors: Dict[str, TableDescriptor] = {}
        self._lock = threading.Lock()

    def register(self, descriptor: Union[TableDescriptor, Mapping[str, Any]]) -> TableDescriptor:
        if not isinstance(descriptor, TableDescriptor):
            descriptor = TableDescriptor.model_validate(descriptor)
        with self._lock:
            if descriptor.name in self._descriptors:
                logger.info(f"Replacing descriptor for table {descriptor.name}")
            self._descriptors[descriptor.name] = descriptor
        return descriptor

    def get(self, name: Optional[str]) -> Optional[TableDescriptor]:
        if not name:
            return None
        return self._descriptors.get(name)

    def names(self) -> List[str]:
        return sorted(self._descriptors)

    def clear(self) -> None:
        with self._lock:
            self._descriptors.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors


registry = DescriptorRegistry()
