from typing import Any, Dict, Union
from xml.parsers.expat import ExpatError

import xmltodict

from .errors import MalformedDocument


def _normalize_name(path, key, value):
    # "@xmlns" / "@xmlns:cas" declarations carry no data for us
    if key.startswith("@xmlns"):
        return None
    prefix = ""
    if key.startswith("@"):
        prefix, key = "@", key[1:]
    return prefix + key.split(":")[-1].lower(), value


def decode(document: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse an XML document into a plain dict.

    Tag and attribute names are lower-cased and stripped of their namespace
    prefix (``cas:authenticationSuccess`` -> ``authenticationsuccess``),
    attributes are keyed ``@name`` and the text of an element that also has
    attributes is keyed ``#text``. Surrounding whitespace is trimmed.
    """
    try:
        return xmltodict.parse(
            document,
            postprocessor=_normalize_name,
            dict_constructor=dict,
            disable_entities=True,
        )
    except (ExpatError, ValueError) as e:
        raise MalformedDocument(f"Response from CAS server was bad: {e}") from e
