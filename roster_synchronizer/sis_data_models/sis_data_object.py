from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .. import exceptions


class SisDataObject(ABC):

    """
    The base class from which every SIS payload model inherits. The
    SIS wraps each record as ``{"data": {...}}``; :meth:`from_json`
    accepts either the wrapper or the bare record.
    """

    object_type = None  # type: str

    @classmethod
    def from_json(cls, json_obj: Dict[str, Any]) -> 'SisDataObject':
        """
        Builds an instance from a SIS JSON record.

        :param json_obj: the record, wrapped or bare
        :raises SisIncompleteDataException: if the record has no id
        """
        record = unwrap(json_obj)
        if not isinstance(record, dict):
            raise exceptions.SisMalformedJsonException(json_obj)
        if not record.get('id'):
            raise exceptions.SisIncompleteDataException(record, 'id')
        return cls._from_record(record)

    @classmethod
    @abstractmethod
    def _from_record(cls, record: Dict[str, Any]) -> 'SisDataObject':
        pass


def unwrap(json_obj: Optional[Dict[str, Any]]):
    if isinstance(json_obj, dict) and isinstance(json_obj.get('data'), dict):
        return json_obj['data']
    return json_obj


def get_str(record: Dict[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    if value is None:
        return None
    return str(value)
